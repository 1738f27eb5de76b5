from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping
from uuid import uuid4

from app.services.grading_errors import GradingFailure


@dataclass(frozen=True, slots=True)
class LatePenaltyPolicy:
    percent_per_day: float  # fraction deducted per day late: 0.1 == 10%
    cutoff_days: int | None = None


@dataclass(frozen=True, slots=True)
class GradeItem:
    """One scored unit of work: a graded quiz attempt, assignment, or override."""

    id: str
    student_id: str
    category: str  # quiz|assignment|participation|extra_credit
    label: str
    raw_score: float
    max_score: float
    weight: float = 1.0
    submitted_at: datetime | None = None
    due_at: datetime | None = None
    adjusted_score: float | None = None  # None means no late penalty applied
    source: str = "assignment"  # quiz|assignment|override
    notes: str | None = None

    @property
    def effective_score(self) -> float:
        return self.raw_score if self.adjusted_score is None else self.adjusted_score

    @property
    def fraction(self) -> float:
        return self.effective_score / self.max_score if self.max_score > 0 else 0.0

    @staticmethod
    def new(
        *,
        student_id: str,
        category: str,
        label: str,
        raw_score: float,
        max_score: float,
        weight: float = 1.0,
        submitted_at: datetime | None = None,
        due_at: datetime | None = None,
        adjusted_score: float | None = None,
        source: str = "assignment",
        notes: str | None = None,
    ) -> GradeItem:
        return GradeItem(
            id=str(uuid4()),
            student_id=student_id,
            category=category,
            label=label,
            raw_score=raw_score,
            max_score=max_score,
            weight=weight,
            submitted_at=submitted_at,
            due_at=due_at,
            adjusted_score=adjusted_score,
            source=source,
            notes=notes,
        )


@dataclass(frozen=True, slots=True)
class CategoryConfig:
    category: str
    weight: float  # 0..100
    drop_lowest: int = 0


@dataclass(frozen=True, slots=True)
class StudentRef:
    student_id: str
    name: str


@dataclass(frozen=True, slots=True)
class CategoryGradeSummary:
    category: str
    weight: float
    earned_points: float = 0.0
    max_points: float = 0.0
    item_count: int = 0
    percentage: float | None = None  # None == no data
    dropped_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.percentage is not None


@dataclass(frozen=True, slots=True)
class StudentGradeSummary:
    student_id: str
    student_name: str
    categories: Mapping[str, CategoryGradeSummary]
    overall_percentage: float | None
    letter_grade: str | None

    def __post_init__(self) -> None:
        # Freeze the mapping so a summary can be shared across requests.
        if not isinstance(self.categories, MappingProxyType):
            object.__setattr__(
                self, "categories", MappingProxyType(dict(self.categories))
            )


@dataclass(frozen=True, slots=True)
class CourseGradebook:
    course_id: str
    configs: tuple[CategoryConfig, ...]
    students: tuple[StudentGradeSummary, ...] = ()
    failures: tuple[GradingFailure, ...] = field(default=())
