"""Score a single submitted answer against its question.

Grading always keys by option id, never by display position, so shuffling
questions or options for display can't change a result.

Multiple-choice (multi-select) uses a strict policy: the selected set must
equal the correct set exactly.  Picking a subset or a superset earns
nothing.  There is no partial credit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from app.models.quiz import Answer, Question, QuestionType
from app.services.grading_errors import (
    ConfigurationError,
    GradingValidationError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    PENDING_MANUAL_REVIEW = "pending_manual_review"


@dataclass(frozen=True, slots=True)
class AnswerGrade:
    outcome: Outcome
    points_awarded: float | None  # None while pending manual review

    @property
    def is_correct(self) -> bool:
        return self.outcome is Outcome.CORRECT

    @property
    def is_pending(self) -> bool:
        return self.outcome is Outcome.PENDING_MANUAL_REVIEW


def check_answer_key(question: Question) -> frozenset[str]:
    """Return the correct option ids, or raise ConfigurationError."""
    correct = question.correct_option_ids
    if not correct:
        raise ConfigurationError(f"question {question.id} has no correct option")
    if question.type in (QuestionType.SINGLE_CHOICE, QuestionType.TRUE_FALSE):
        if len(correct) != 1:
            raise ConfigurationError(
                f"question {question.id} ({question.type}) must have exactly "
                f"one correct option (has {len(correct)})"
            )
    return correct


def check_selection(question: Question, selected: frozenset[str]) -> None:
    """Raise GradingValidationError if ``selected`` names an unknown option."""
    known = {o.id for o in question.options}
    unknown = selected - known
    if unknown:
        logger.warning(
            "Answer references unknown option(s) question=%s options=%s",
            question.id,
            sorted(unknown),
        )
        raise GradingValidationError(
            f"answer for question {question.id} references unknown option(s): "
            f"{', '.join(sorted(unknown))}"
        )


def score_choice_answer(question: Question, answer: Answer | None) -> bool:
    """Auto-grade a choice question.  Returns True iff the answer is correct.

    Raises UnsupportedOperationError for short-answer questions,
    ConfigurationError for a question with an impossible answer key, and
    GradingValidationError when the answer names an option the question
    doesn't have.
    """
    if not question.type.is_choice:
        raise UnsupportedOperationError(
            f"question {question.id} is {question.type} and needs manual grading"
        )

    correct = check_answer_key(question)
    selected = answer.selected_option_ids if answer is not None else frozenset()
    check_selection(question, selected)

    if not selected:
        return False

    if question.type is QuestionType.MULTIPLE_CHOICE:
        return selected == correct

    # single_choice / true_false: exactly one pick, and it must be the key
    return len(selected) == 1 and selected == correct


def grade_answer(question: Question, answer: Answer | None) -> AnswerGrade:
    """Grade one answer.  Short answers come back pending manual review.

    A blank short answer has nothing to review and scores as incorrect.
    """
    if question.type is QuestionType.SHORT_ANSWER:
        if answer is None or answer.is_blank:
            return AnswerGrade(outcome=Outcome.INCORRECT, points_awarded=0)
        return AnswerGrade(outcome=Outcome.PENDING_MANUAL_REVIEW, points_awarded=None)

    if score_choice_answer(question, answer):
        return AnswerGrade(outcome=Outcome.CORRECT, points_awarded=question.points)
    return AnswerGrade(outcome=Outcome.INCORRECT, points_awarded=0)
