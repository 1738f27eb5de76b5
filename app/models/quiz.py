from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import uuid4


class QuestionType(StrEnum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"  # multi-select
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"

    @property
    def is_choice(self) -> bool:
        return self is not QuestionType.SHORT_ANSWER


@dataclass(frozen=True, slots=True)
class Option:
    id: str
    question_id: str
    text: str
    is_correct: bool = False
    position: int = 0


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    quiz_id: str
    text: str
    type: QuestionType
    options: tuple[Option, ...] = ()
    points: float = 1
    position: int = 0
    explanation: str | None = None
    time_limit_seconds: int | None = None

    @property
    def correct_option_ids(self) -> frozenset[str]:
        return frozenset(o.id for o in self.options if o.is_correct)

    def option_by_id(self, option_id: str) -> Option | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


@dataclass(frozen=True, slots=True)
class Quiz:
    id: str
    title: str
    questions: tuple[Question, ...] = ()
    passing_score: float = 70  # percentage
    time_limit_seconds: int | None = None
    max_attempts: int | None = None
    shuffle_questions: bool = False
    course_id: str | None = None

    @property
    def max_score(self) -> float:
        return sum(q.points for q in self.questions)


@dataclass(frozen=True, slots=True)
class Answer:
    """A student's selection(s) for one question, or free text."""

    question_id: str
    selected_option_ids: frozenset[str] = field(default_factory=frozenset)
    text: str | None = None

    @property
    def is_blank(self) -> bool:
        return not self.selected_option_ids and not (self.text or "").strip()


@dataclass(frozen=True, slots=True)
class Attempt:
    id: str
    quiz_id: str
    student_id: str
    started_at: datetime
    submitted_at: datetime | None = None
    answers: tuple[Answer, ...] = ()
    attempt_no: int = 1
    score: float | None = None  # percentage, set once graded
    passed: bool | None = None

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    @staticmethod
    def start(
        *, quiz_id: str, student_id: str, started_at: datetime, attempt_no: int = 1
    ) -> Attempt:
        return Attempt(
            id=str(uuid4()),
            quiz_id=quiz_id,
            student_id=student_id,
            started_at=started_at,
            attempt_no=attempt_no,
        )
