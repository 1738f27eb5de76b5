"""Gradebook endpoints: weights, grade entry, per-student and course views.

The instructor matrix and CSV export are recomputed from grade items on
a cache miss and cached per course:
  GET                /v1/gradebook/{course_id}      -> read-through cache
  POST|PATCH|DELETE  /v1/gradebook/{course_id}/...  -> invalidate course keys

Aggregation failures come back as 422 with the failure kind, so a
misconfigured course reads as a client-fixable error rather than a 500.
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import replace
from typing import Annotated, Literal, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, model_validator

from app.api.dependencies import require_instructor, require_user
from app.core.config import SETTINGS
from app.core.metrics import CACHE_OPERATIONS, GRADEBOOK_EXPORTS, GRADING_FAILURES
from app.models.gradebook import (
    CategoryConfig,
    CategoryGradeSummary,
    CourseGradebook,
    GradeItem,
    LatePenaltyPolicy,
    StudentGradeSummary,
    StudentRef,
)
from app.models.principal import Principal
from app.repos.gradebook_repo import InMemoryGradebookRepo
from app.services.cache import cache_service
from app.services.gradebook import (
    aggregate,
    aggregate_course,
    category_label,
    class_statistics,
    validate_configs,
    validate_item,
)
from app.services.gradebook_export import export_gradebook_csv
from app.services.grading_errors import (
    ConfigurationError,
    GradingError,
    GradingFailure,
    GradingValidationError,
)
from app.services.late_penalty import apply_late_penalty, calculate_late_penalty

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/gradebook", tags=["gradebook"])

GradeCategory = Literal["quiz", "assignment", "participation", "extra_credit"]

gradebook_repo = InMemoryGradebookRepo()

SAMPLE_COURSE_ID = "intro-to-python"


def seed_sample_gradebook() -> None:
    """Seed a sample course gradebook for development/testing."""
    if not gradebook_repo.get_configs(SAMPLE_COURSE_ID):
        gradebook_repo.set_configs(
            SAMPLE_COURSE_ID,
            (
                CategoryConfig(category="quiz", weight=60),
                CategoryConfig(category="assignment", weight=40),
            ),
        )


seed_sample_gradebook()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CategoryConfigIn(BaseModel):
    category: GradeCategory
    weight: float = Field(ge=0, le=100)
    drop_lowest: int = Field(default=0, ge=0, le=20)


class GradebookConfigIn(BaseModel):
    configs: list[CategoryConfigIn] = Field(min_length=1, max_length=4)


class CategoryConfigOut(BaseModel):
    category: str
    label: str
    weight: float
    drop_lowest: int


class EnrollmentIn(BaseModel):
    student_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)


class AssignmentGradeIn(BaseModel):
    student_id: str = Field(min_length=1)
    label: str = Field(min_length=1, max_length=200)
    raw_score: float = Field(ge=0)
    max_score: float = Field(gt=0, le=10000)
    submitted_at: datetime.datetime
    due_at: datetime.datetime | None = None
    percent_per_day: float = Field(default=0, ge=0, le=1)
    cutoff_days: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _score_within_max(self) -> AssignmentGradeIn:
        if self.raw_score > self.max_score:
            raise ValueError("raw_score must not exceed max_score")
        if self.due_at is not None and (
            (self.due_at.tzinfo is None) != (self.submitted_at.tzinfo is None)
        ):
            raise ValueError("submitted_at and due_at must both carry a timezone")
        return self


class OverrideIn(BaseModel):
    student_id: str = Field(min_length=1)
    category: GradeCategory
    label: str = Field(min_length=1, max_length=200)
    score: float = Field(ge=0)
    max_score: float = Field(default=100, gt=0, le=10000)
    notes: str | None = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def _score_within_max(self) -> OverrideIn:
        if self.score > self.max_score:
            raise ValueError("score must not exceed max_score")
        return self


class OverrideUpdateIn(BaseModel):
    category: GradeCategory | None = None
    label: str | None = Field(default=None, min_length=1, max_length=200)
    score: float | None = Field(default=None, ge=0)
    max_score: float | None = Field(default=None, gt=0, le=10000)
    notes: str | None = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def _only_notes_may_be_cleared(self) -> OverrideUpdateIn:
        for name in ("category", "label", "score", "max_score"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class GradeItemOut(BaseModel):
    id: str
    student_id: str
    category: str
    label: str
    raw_score: float
    max_score: float
    adjusted_score: float
    penalty_multiplier: float = 1.0
    source: str
    notes: str | None = None


class CategorySummaryOut(BaseModel):
    category: str
    label: str
    weight: float
    earned_points: float
    max_points: float
    item_count: int
    dropped_count: int
    percentage: float | None


class StudentSummaryOut(BaseModel):
    student_id: str
    student_name: str
    categories: list[CategorySummaryOut]
    overall_percentage: float | None
    letter_grade: str | None


class FailureOut(BaseModel):
    scope: str | None
    kind: str
    message: str


class GradebookOut(BaseModel):
    course_id: str
    configs: list[CategoryConfigOut]
    students: list[StudentSummaryOut]
    failures: list[FailureOut]


class ClassStatsOut(BaseModel):
    student_count: int
    graded_count: int
    class_average: float | None
    highest: float | None
    lowest: float | None
    distribution: dict[str, int]


# ---------------------------------------------------------------------------
# Conversions and helpers
# ---------------------------------------------------------------------------


def _config_out(config: CategoryConfig) -> CategoryConfigOut:
    return CategoryConfigOut(
        category=config.category,
        label=category_label(config.category),
        weight=config.weight,
        drop_lowest=config.drop_lowest,
    )


def _category_out(summary: CategoryGradeSummary) -> CategorySummaryOut:
    return CategorySummaryOut(
        category=summary.category,
        label=category_label(summary.category),
        weight=summary.weight,
        earned_points=summary.earned_points,
        max_points=summary.max_points,
        item_count=summary.item_count,
        dropped_count=summary.dropped_count,
        percentage=summary.percentage,
    )


def _student_out(summary: StudentGradeSummary) -> StudentSummaryOut:
    return StudentSummaryOut(
        student_id=summary.student_id,
        student_name=summary.student_name,
        categories=[_category_out(c) for c in summary.categories.values()],
        overall_percentage=summary.overall_percentage,
        letter_grade=summary.letter_grade,
    )


def _failure_out(failure: GradingFailure) -> FailureOut:
    return FailureOut(scope=failure.scope, kind=failure.kind, message=failure.message)


def _item_out(item: GradeItem, multiplier: float = 1.0) -> GradeItemOut:
    return GradeItemOut(
        id=item.id,
        student_id=item.student_id,
        category=item.category,
        label=item.label,
        raw_score=item.raw_score,
        max_score=item.max_score,
        adjusted_score=item.effective_score,
        penalty_multiplier=multiplier,
        source=item.source,
        notes=item.notes,
    )


def raise_for_failure(failure: GradingFailure) -> NoReturn:
    """Turn a grading failure into a 422 and count it."""
    GRADING_FAILURES.labels(kind=failure.kind).inc()
    logger.warning(
        "Grading failure kind=%s scope=%s: %s",
        failure.kind,
        failure.scope,
        failure.message,
    )
    raise HTTPException(
        status_code=422,
        detail={"kind": failure.kind, "message": failure.message},
    )


def _cache_key(course_id: str, view: str) -> str:
    return f"gradebook:{course_id}:{view}"


async def _cache_put(key: str, value: str) -> None:
    # GRADEBOOK_CACHE_TTL=0 turns caching off.
    if SETTINGS.gradebook_cache_ttl > 0:
        await cache_service.set(key, value, SETTINGS.gradebook_cache_ttl)


async def invalidate_course(course_id: str) -> None:
    await cache_service.delete_pattern(_cache_key(course_id, "*"))


def _require_course(course_id: str) -> tuple[CategoryConfig, ...]:
    configs = gradebook_repo.get_configs(course_id)
    if not configs:
        raise HTTPException(status_code=404, detail="gradebook not configured")
    return configs


def _require_enrolled(course_id: str, student_id: str) -> None:
    if not gradebook_repo.is_enrolled(course_id, student_id):
        raise HTTPException(status_code=404, detail="student not enrolled in course")


def _build_course_gradebook(course_id: str) -> CourseGradebook:
    configs = _require_course(course_id)
    result = aggregate_course(
        course_id,
        gradebook_repo.roster(course_id),
        gradebook_repo.items_for_course(course_id),
        configs,
    )
    if isinstance(result, GradingFailure):
        raise_for_failure(result)
    for failure in result.failures:
        GRADING_FAILURES.labels(kind=failure.kind).inc()
    return result


def _gradebook_out(gradebook: CourseGradebook) -> GradebookOut:
    return GradebookOut(
        course_id=gradebook.course_id,
        configs=[_config_out(c) for c in gradebook.configs],
        students=[_student_out(s) for s in gradebook.students],
        failures=[_failure_out(f) for f in gradebook.failures],
    )


# ---------------------------------------------------------------------------
# Course views (instructor)
# ---------------------------------------------------------------------------


@router.get("/{course_id}", response_model=GradebookOut)
async def get_course_gradebook(
    course_id: str,
    _principal: Annotated[Principal, Depends(require_instructor)],
) -> GradebookOut:
    cache_key = _cache_key(course_id, "matrix")
    cached = await cache_service.get(cache_key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return GradebookOut(**json.loads(cached))

    CACHE_OPERATIONS.labels(operation="miss").inc()
    out = _gradebook_out(_build_course_gradebook(course_id))
    await _cache_put(cache_key, out.model_dump_json())
    return out


@router.get("/{course_id}/export")
async def export_course_gradebook(
    course_id: str,
    _principal: Annotated[Principal, Depends(require_instructor)],
) -> Response:
    cache_key = _cache_key(course_id, "csv")
    csv_text = await cache_service.get(cache_key)
    if csv_text is None:
        CACHE_OPERATIONS.labels(operation="miss").inc()
        csv_text = export_gradebook_csv(_build_course_gradebook(course_id))
        await _cache_put(cache_key, csv_text)
    else:
        CACHE_OPERATIONS.labels(operation="hit").inc()

    GRADEBOOK_EXPORTS.inc()
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="gradebook-{course_id}.csv"'
        },
    )


@router.get("/{course_id}/stats", response_model=ClassStatsOut)
def get_class_stats(
    course_id: str,
    _principal: Annotated[Principal, Depends(require_instructor)],
) -> ClassStatsOut:
    stats = class_statistics(_build_course_gradebook(course_id))
    return ClassStatsOut(
        student_count=stats.student_count,
        graded_count=stats.graded_count,
        class_average=stats.class_average,
        highest=stats.highest,
        lowest=stats.lowest,
        distribution=dict(stats.distribution),
    )


# ---------------------------------------------------------------------------
# Student view
# ---------------------------------------------------------------------------


@router.get("/{course_id}/me", response_model=StudentSummaryOut)
def get_my_grades(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> StudentSummaryOut:
    configs = _require_course(course_id)
    _require_enrolled(course_id, principal.user_id)
    ref = next(
        r for r in gradebook_repo.roster(course_id) if r.student_id == principal.user_id
    )
    result = aggregate(
        gradebook_repo.items_for_student(course_id, principal.user_id),
        configs,
        student_id=ref.student_id,
        student_name=ref.name,
    )
    if isinstance(result, GradingFailure):
        raise_for_failure(result)
    return _student_out(result)


@router.get("/{course_id}/config", response_model=list[CategoryConfigOut])
def get_config(
    course_id: str,
    _principal: Annotated[Principal, Depends(require_user)],
) -> list[CategoryConfigOut]:
    return [_config_out(c) for c in _require_course(course_id)]


@router.get("/{course_id}/overrides", response_model=list[GradeItemOut])
def list_overrides(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    student_id: str | None = None,
) -> list[GradeItemOut]:
    """Instructors may filter by ``student_id``; students only see their own."""
    _require_course(course_id)
    if not principal.is_instructor():
        student_id = principal.user_id
    items = (
        gradebook_repo.items_for_course(course_id)
        if student_id is None
        else gradebook_repo.items_for_student(course_id, student_id)
    )
    return [_item_out(i) for i in items if i.source == "override"]


# ---------------------------------------------------------------------------
# Writes (instructor); each one invalidates the course's cached views
# ---------------------------------------------------------------------------


@router.put("/{course_id}/config", response_model=list[CategoryConfigOut])
async def replace_config(
    course_id: str,
    body: GradebookConfigIn,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> list[CategoryConfigOut]:
    configs = tuple(
        CategoryConfig(category=c.category, weight=c.weight, drop_lowest=c.drop_lowest)
        for c in body.configs
    )
    try:
        validate_configs(configs)
    except ConfigurationError as exc:
        raise_for_failure(GradingFailure(exc, scope=course_id))

    gradebook_repo.set_configs(course_id, configs)
    await invalidate_course(course_id)
    logger.info(
        "Gradebook config replaced course=%s by=%s categories=%s",
        course_id,
        principal.user_id,
        [c.category for c in configs],
    )
    return [_config_out(c) for c in configs]


@router.post(
    "/{course_id}/roster",
    response_model=EnrollmentIn,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_student(
    course_id: str,
    body: EnrollmentIn,
    _principal: Annotated[Principal, Depends(require_instructor)],
) -> EnrollmentIn:
    _require_course(course_id)
    student = StudentRef(student_id=body.student_id, name=body.name)
    gradebook_repo.enroll(course_id, student)
    await invalidate_course(course_id)
    return body


@router.post(
    "/{course_id}/assignments",
    response_model=GradeItemOut,
    status_code=status.HTTP_201_CREATED,
)
async def record_assignment_grade(
    course_id: str,
    body: AssignmentGradeIn,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> GradeItemOut:
    _require_course(course_id)
    _require_enrolled(course_id, body.student_id)

    multiplier = 1.0
    if body.due_at is not None:
        policy = LatePenaltyPolicy(
            percent_per_day=body.percent_per_day, cutoff_days=body.cutoff_days
        )
        try:
            multiplier = calculate_late_penalty(body.submitted_at, body.due_at, policy)
        except GradingError as exc:
            raise_for_failure(GradingFailure(exc, scope=body.student_id))

    item = GradeItem.new(
        student_id=body.student_id,
        category="assignment",
        label=body.label,
        raw_score=body.raw_score,
        max_score=body.max_score,
        submitted_at=body.submitted_at,
        due_at=body.due_at,
        adjusted_score=apply_late_penalty(body.raw_score, multiplier),
        source="assignment",
    )
    gradebook_repo.add_item(course_id, item)
    await invalidate_course(course_id)
    logger.info(
        "Assignment graded course=%s student=%s label=%s score=%s/%s "
        "multiplier=%.2f by=%s",
        course_id,
        body.student_id,
        body.label,
        item.effective_score,
        item.max_score,
        multiplier,
        principal.user_id,
    )
    return _item_out(item, multiplier)


@router.post(
    "/{course_id}/overrides",
    response_model=GradeItemOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_override(
    course_id: str,
    body: OverrideIn,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> GradeItemOut:
    _require_course(course_id)
    _require_enrolled(course_id, body.student_id)

    item = GradeItem.new(
        student_id=body.student_id,
        category=body.category,
        label=body.label,
        raw_score=body.score,
        max_score=body.max_score,
        submitted_at=datetime.datetime.now(datetime.UTC),
        source="override",
        notes=body.notes,
    )
    gradebook_repo.add_item(course_id, item)
    await invalidate_course(course_id)
    logger.info(
        "Grade override course=%s student=%s category=%s by=%s",
        course_id,
        body.student_id,
        body.category,
        principal.user_id,
    )
    return _item_out(item)


def _require_override(course_id: str, override_id: str) -> GradeItem:
    item = gradebook_repo.get_item(course_id, override_id)
    # Quiz and assignment items are managed through their own flows.
    if item is None or item.source != "override":
        raise HTTPException(status_code=404, detail="override not found")
    return item


@router.patch("/{course_id}/overrides/{override_id}", response_model=GradeItemOut)
async def update_override(
    course_id: str,
    override_id: str,
    body: OverrideUpdateIn,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> GradeItemOut:
    _require_course(course_id)
    item = _require_override(course_id, override_id)

    changes = body.model_dump(exclude_unset=True)
    if "score" in changes:
        changes["raw_score"] = changes.pop("score")
    updated = replace(item, **changes)
    try:
        validate_item(updated)
    except GradingValidationError as exc:
        raise_for_failure(GradingFailure(exc, scope=override_id))

    gradebook_repo.upsert_item(course_id, updated)
    await invalidate_course(course_id)
    logger.info(
        "Grade override updated course=%s override=%s fields=%s by=%s",
        course_id,
        override_id,
        sorted(changes),
        principal.user_id,
    )
    return _item_out(updated)


@router.delete(
    "/{course_id}/overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_override(
    course_id: str,
    override_id: str,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> Response:
    _require_course(course_id)
    _require_override(course_id, override_id)
    gradebook_repo.delete_item(course_id, override_id)
    await invalidate_course(course_id)
    logger.info(
        "Grade override deleted course=%s override=%s by=%s",
        course_id,
        override_id,
        principal.user_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
