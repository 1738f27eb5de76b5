"""Grade a whole quiz attempt.

Questions are walked in the quiz's own order, not the order the answers
arrived in, so a skipped question is scored as incorrect instead of
silently dropping out of the total.

A timed-out attempt is not forfeited.  It is force-submitted with the
answers recorded before expiry, then graded like any other attempt.
Attempt-count limits belong to the caller; grade_quiz is pure and can be
re-run on the same attempt any number of times.
"""

from __future__ import annotations

import datetime
import logging
import random
from dataclasses import dataclass, replace
from typing import Sequence, TypeVar

from app.models.quiz import Answer, Attempt, Question, Quiz
from app.services.answer_grader import Outcome, check_selection, grade_answer
from app.services.grading_errors import (
    ConfigurationError,
    GradingFailure,
    GradingValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class QuestionResult:
    question_id: str
    question_text: str
    outcome: Outcome
    points_awarded: float | None
    points_possible: float
    correct_answer: str | None = None
    student_answer: str | None = None
    explanation: str | None = None


@dataclass(frozen=True, slots=True)
class QuizResult:
    quiz_id: str
    attempt_id: str
    score: float
    max_score: float
    percentage: float
    passed: bool
    per_question: tuple[QuestionResult, ...]
    pending_review_points: float = 0.0
    timed_out: bool = False

    @property
    def requires_manual_review(self) -> bool:
        return any(
            r.outcome is Outcome.PENDING_MANUAL_REVIEW for r in self.per_question
        )


def _display_text(
    question: Question, answer: Answer | None
) -> tuple[str | None, str | None]:
    if not question.type.is_choice:
        return None, answer.text if answer is not None else None

    correct = ", ".join(o.text for o in question.options if o.is_correct) or None
    if answer is None or not answer.selected_option_ids:
        return correct, None
    # Report picks in the question's canonical option order.
    picked = ", ".join(
        o.text for o in question.options if o.id in answer.selected_option_ids
    )
    return correct, picked or None


def grade_quiz(
    quiz: Quiz, attempt: Attempt, *, timed_out: bool = False
) -> QuizResult | GradingFailure:
    """Score every question of ``quiz`` against the answers in ``attempt``.

    Returns a GradingFailure when the quiz itself is misconfigured (no
    points to earn, or a question with an impossible answer key).  Raises
    GradingValidationError when the attempt references a question or an
    option that doesn't exist.
    """
    if attempt.quiz_id != quiz.id:
        raise GradingValidationError(
            f"attempt {attempt.id} belongs to quiz {attempt.quiz_id}, not {quiz.id}"
        )

    max_score = quiz.max_score
    if max_score <= 0:
        logger.warning("Quiz has no points to earn quiz=%s", quiz.id)
        return GradingFailure(
            ConfigurationError(f"quiz {quiz.id} has a max score of {max_score}"),
            scope=attempt.id,
        )

    answers = {a.question_id: a for a in attempt.answers}
    check_answers(quiz, attempt.answers)

    score = 0.0
    pending = 0.0
    results: list[QuestionResult] = []
    for question in quiz.questions:
        answer = answers.get(question.id)
        try:
            grade = grade_answer(question, answer)
        except ConfigurationError as exc:
            logger.warning("Quiz misconfigured quiz=%s: %s", quiz.id, exc)
            return GradingFailure(exc, scope=attempt.id)

        if grade.points_awarded is not None:
            score += grade.points_awarded
        else:
            pending += question.points

        correct_text, student_text = _display_text(question, answer)
        results.append(
            QuestionResult(
                question_id=question.id,
                question_text=question.text,
                outcome=grade.outcome,
                points_awarded=grade.points_awarded,
                points_possible=question.points,
                correct_answer=correct_text,
                student_answer=student_text,
                explanation=question.explanation,
            )
        )

    percentage = score * 100 / max_score
    result = QuizResult(
        quiz_id=quiz.id,
        attempt_id=attempt.id,
        score=score,
        max_score=max_score,
        percentage=percentage,
        passed=percentage >= quiz.passing_score,
        per_question=tuple(results),
        pending_review_points=pending,
        timed_out=timed_out,
    )
    logger.debug(
        "Graded attempt=%s quiz=%s score=%s/%s passed=%s",
        attempt.id,
        quiz.id,
        score,
        max_score,
        result.passed,
    )
    return result


def check_answers(quiz: Quiz, answers: Sequence[Answer]) -> None:
    """Raise GradingValidationError for an unknown question or option id.

    Run on every save so a bad answer is refused before it is stored; a
    timed-out attempt is graded from its saved answers and must not fail.
    """
    questions = {q.id: q for q in quiz.questions}
    stray = sorted({a.question_id for a in answers} - questions.keys())
    if stray:
        raise GradingValidationError(
            f"answers reference question(s) not in quiz {quiz.id}: "
            f"{', '.join(stray)}"
        )
    for answer in answers:
        question = questions[answer.question_id]
        if question.type.is_choice:
            check_selection(question, answer.selected_option_ids)


# ---------------------------------------------------------------------------
# Timeout policy
# ---------------------------------------------------------------------------


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def is_quiz_timed_out(
    attempt: Attempt, quiz: Quiz, now: datetime.datetime | None = None
) -> bool:
    """True once an unsubmitted attempt has run past the quiz time limit.

    Reaching the limit exactly is not a timeout; it has to be exceeded.
    """
    if quiz.time_limit_seconds is None or attempt.is_submitted:
        return False
    elapsed = (now or _now()) - attempt.started_at
    return elapsed.total_seconds() > quiz.time_limit_seconds


def force_submit(attempt: Attempt, now: datetime.datetime | None = None) -> Attempt:
    """Close an attempt with whatever answers it already holds."""
    if attempt.is_submitted:
        return attempt
    return replace(attempt, submitted_at=now or _now())


def save_answers(attempt: Attempt, answers: Sequence[Answer]) -> Attempt:
    """Record in-progress answers, replacing earlier answers per question."""
    if attempt.is_submitted:
        raise GradingValidationError(f"attempt {attempt.id} is already submitted")
    merged = {a.question_id: a for a in attempt.answers}
    merged.update((a.question_id, a) for a in answers)
    return replace(attempt, answers=tuple(merged.values()))


def submit_answers(
    attempt: Attempt,
    answers: Sequence[Answer],
    now: datetime.datetime | None = None,
) -> Attempt:
    """Record the final answers and stamp the submission time.

    Submission is terminal: a submitted attempt can't be submitted again.
    """
    if attempt.is_submitted:
        raise GradingValidationError(f"attempt {attempt.id} is already submitted")
    return replace(attempt, answers=tuple(answers), submitted_at=now or _now())


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def shuffle_for_display(
    items: Sequence[T], rng: random.Random | None = None
) -> list[T]:
    """Return a shuffled copy of ``items``; the input is left untouched."""
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled


def format_quiz_duration(minutes: int) -> str:
    """15 -> "15 min", 60 -> "1 hr", 90 -> "1 hr 30 min"."""
    if minutes < 60:
        return f"{minutes} min"
    hours, remainder = divmod(minutes, 60)
    if remainder == 0:
        return f"{hours} hr"
    return f"{hours} hr {remainder} min"
