"""Gradebook aggregation: per-category, overall, and course-wide grades.

WEIGHTING POLICY
-----------------
A category with no items has no data.  It is reported as such
(percentage=None) and left out of the overall grade entirely.  The
overall is re-normalized by the weights of the categories that DO have
data, so an instructor who configures "Participation 10%" but never
records any participation doesn't quietly cost every student 10%.

Weights that don't add up to 100 are treated as relative weights and
normalized by their actual sum.  That is logged, not rejected.  Only
configs that can't be normalized at all (a weight outside 0..100, the
same category twice, every weight zero) fail with ConfigurationError.

Course-wide runs aggregate each student independently.  One student's
bad data lands in CourseGradebook.failures; everyone else still gets a
grade.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from app.models.gradebook import (
    CategoryConfig,
    CategoryGradeSummary,
    CourseGradebook,
    GradeItem,
    StudentGradeSummary,
    StudentRef,
)
from app.services.grading_errors import (
    ConfigurationError,
    GradingError,
    GradingFailure,
    GradingValidationError,
)

logger = logging.getLogger(__name__)

MAX_DROP_LOWEST = 20

CATEGORY_LABELS: Mapping[str, str] = {
    "quiz": "Quizzes",
    "assignment": "Assignments",
    "participation": "Participation",
    "extra_credit": "Extra Credit",
}

# (threshold, letter), highest first
_LETTER_SCALE: tuple[tuple[float, str], ...] = (
    (93, "A"),
    (90, "A-"),
    (87, "B+"),
    (83, "B"),
    (80, "B-"),
    (77, "C+"),
    (73, "C"),
    (70, "C-"),
    (67, "D+"),
    (63, "D"),
    (60, "D-"),
)


def category_label(category: str) -> str:
    return CATEGORY_LABELS.get(category, category)


def grade_to_letter(percentage: float) -> str:
    for threshold, letter in _LETTER_SCALE:
        if percentage >= threshold:
            return letter
    return "F"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_configs(configs: Sequence[CategoryConfig]) -> None:
    """Raise ConfigurationError for weights that can't be normalized."""
    seen: set[str] = set()
    for config in configs:
        if config.category in seen:
            raise ConfigurationError(f"category {config.category!r} configured twice")
        seen.add(config.category)
        if not 0 <= config.weight <= 100:
            raise ConfigurationError(
                f"weight for {config.category!r} must be within 0..100 "
                f"(got {config.weight!r})"
            )
        if not 0 <= config.drop_lowest <= MAX_DROP_LOWEST:
            raise ConfigurationError(
                f"drop_lowest for {config.category!r} must be within "
                f"0..{MAX_DROP_LOWEST} (got {config.drop_lowest!r})"
            )

    total = sum(c.weight for c in configs)
    if total <= 0:
        raise ConfigurationError("category weights sum to zero")
    if total != 100:
        logger.warning(
            "Category weights sum to %s, not 100; normalizing by actual sum", total
        )


def validate_item(item: GradeItem) -> None:
    if item.max_score <= 0:
        raise GradingValidationError(
            f"grade item {item.id} has max_score {item.max_score!r} (must be > 0)"
        )
    if not 0 <= item.raw_score <= item.max_score:
        raise GradingValidationError(
            f"grade item {item.id} has raw_score {item.raw_score!r} "
            f"outside 0..{item.max_score!r}"
        )
    adjusted = item.adjusted_score
    if adjusted is not None and not 0 <= adjusted <= item.max_score:
        raise GradingValidationError(
            f"grade item {item.id} has adjusted_score {adjusted!r} "
            f"outside 0..{item.max_score!r}"
        )
    if item.weight < 0:
        raise GradingValidationError(
            f"grade item {item.id} has negative weight {item.weight!r}"
        )


# ---------------------------------------------------------------------------
# Per-category and overall
# ---------------------------------------------------------------------------


def summarize_category(
    config: CategoryConfig, items: Sequence[GradeItem]
) -> CategoryGradeSummary:
    """Weighted percentage for one category after dropping the lowest items.

    Never drops every item: at least one always counts.
    """
    if not items:
        return CategoryGradeSummary(category=config.category, weight=config.weight)

    # Lowest fraction first; ties keep their input order (sorted is stable).
    ranked = sorted(items, key=lambda i: i.fraction)
    drop = min(config.drop_lowest, len(ranked) - 1)
    kept = ranked[drop:]

    earned = sum(i.effective_score * i.weight for i in kept)
    possible = sum(i.max_score * i.weight for i in kept)
    percentage = earned * 100 / possible if possible > 0 else None

    return CategoryGradeSummary(
        category=config.category,
        weight=config.weight,
        earned_points=earned,
        max_points=possible,
        item_count=len(items),
        percentage=percentage,
        dropped_count=drop,
    )


def overall_percentage(categories: Iterable[CategoryGradeSummary]) -> float | None:
    """Weighted average over the categories that have data, or None."""
    with_data = [
        (c.percentage, c.weight) for c in categories if c.percentage is not None
    ]
    total_weight = sum(w for _, w in with_data)
    if not with_data or total_weight <= 0:
        return None
    return sum(p * w for p, w in with_data) / total_weight


def _summarize_student(
    student_id: str,
    student_name: str,
    items: Sequence[GradeItem],
    configs: Sequence[CategoryConfig],
) -> StudentGradeSummary:
    by_category: dict[str, list[GradeItem]] = defaultdict(list)
    configured = {c.category for c in configs}
    for item in items:
        validate_item(item)
        if item.category not in configured:
            logger.warning(
                "Ignoring grade item=%s for unconfigured category=%s",
                item.id,
                item.category,
            )
            continue
        by_category[item.category].append(item)

    categories = {
        c.category: summarize_category(c, by_category.get(c.category, ()))
        for c in configs
    }
    overall = overall_percentage(categories.values())
    return StudentGradeSummary(
        student_id=student_id,
        student_name=student_name,
        categories=categories,
        overall_percentage=overall,
        letter_grade=grade_to_letter(overall) if overall is not None else None,
    )


def aggregate(
    items: Sequence[GradeItem],
    configs: Sequence[CategoryConfig],
    *,
    student_id: str,
    student_name: str = "",
) -> StudentGradeSummary | GradingFailure:
    """Aggregate one student's grade items into a StudentGradeSummary."""
    try:
        validate_configs(configs)
        return _summarize_student(student_id, student_name, items, configs)
    except GradingError as exc:
        logger.warning("Aggregation failed student=%s: %s", student_id, exc)
        return GradingFailure(exc, scope=student_id)


def _display_order(summary: StudentGradeSummary) -> tuple[str, str, str]:
    return (summary.student_name.casefold(), summary.student_name, summary.student_id)


def aggregate_course(
    course_id: str,
    roster: Sequence[StudentRef],
    items: Sequence[GradeItem],
    configs: Sequence[CategoryConfig],
) -> CourseGradebook | GradingFailure:
    """Aggregate every enrolled student.

    Items for students not on the roster are ignored.
    """
    try:
        validate_configs(configs)
    except ConfigurationError as exc:
        logger.warning("Gradebook config rejected course=%s: %s", course_id, exc)
        return GradingFailure(exc, scope=course_id)

    by_student: dict[str, list[GradeItem]] = defaultdict(list)
    for item in items:
        by_student[item.student_id].append(item)

    students: list[StudentGradeSummary] = []
    failures: list[GradingFailure] = []
    for ref in roster:
        try:
            students.append(
                _summarize_student(
                    ref.student_id,
                    ref.name,
                    by_student.get(ref.student_id, ()),
                    configs,
                )
            )
        except GradingError as exc:
            logger.warning(
                "Aggregation failed course=%s student=%s: %s",
                course_id,
                ref.student_id,
                exc,
            )
            failures.append(GradingFailure(exc, scope=ref.student_id))

    students.sort(key=_display_order)
    failures.sort(key=lambda f: f.scope or "")
    return CourseGradebook(
        course_id=course_id,
        configs=tuple(configs),
        students=tuple(students),
        failures=tuple(failures),
    )


def keep_best(existing: GradeItem | None, candidate: GradeItem) -> GradeItem:
    """Best attempt wins; a tie keeps the earlier item."""
    if existing is None or candidate.fraction > existing.fraction:
        return candidate
    return existing


# ---------------------------------------------------------------------------
# Class-level statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClassStatistics:
    student_count: int
    graded_count: int
    class_average: float | None
    highest: float | None
    lowest: float | None
    distribution: Mapping[str, int]


def class_statistics(gradebook: CourseGradebook) -> ClassStatistics:
    """Summary figures over the students that have an overall grade."""
    percentages: list[float] = []
    distribution: Counter[str] = Counter()
    for student in gradebook.students:
        if student.overall_percentage is None:
            continue
        percentages.append(student.overall_percentage)
        distribution[student.letter_grade or "F"] += 1
    return ClassStatistics(
        student_count=len(gradebook.students),
        graded_count=len(percentages),
        class_average=sum(percentages) / len(percentages) if percentages else None,
        highest=max(percentages) if percentages else None,
        lowest=min(percentages) if percentages else None,
        distribution=dict(distribution),
    )
