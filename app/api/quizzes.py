"""Quiz authoring and quiz-taking endpoints.

Attempt lifecycle:
  POST /v1/quizzes/{quiz_id}/attempts                         -> start (in_progress)
  PUT  /v1/quizzes/{quiz_id}/attempts/{attempt_id}/answers    -> save progress
  POST /v1/quizzes/{quiz_id}/attempts/{attempt_id}/submit     -> grade (terminal)

Once the time limit passes, new answers are refused and the next submit
force-closes the attempt with the answers saved before expiry.  The best
graded attempt per quiz is what the course gradebook sees.
"""

from __future__ import annotations

import datetime
import logging
import math
import uuid
from dataclasses import replace
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_instructor, require_user
from app.api.gradebook import gradebook_repo, invalidate_course, raise_for_failure
from app.core.config import SETTINGS
from app.core.metrics import GRADING_FAILURES, QUIZ_ATTEMPTS_GRADED
from app.models.gradebook import GradeItem, StudentRef
from app.models.principal import Principal
from app.models.quiz import Answer, Attempt, Option, Question, QuestionType, Quiz
from app.repos.quiz_repo import InMemoryQuizRepo
from app.services.answer_grader import check_answer_key
from app.services.gradebook import keep_best
from app.services.grading_errors import (
    ConfigurationError,
    GradingFailure,
    GradingValidationError,
)
from app.services.quiz_grader import (
    QuizResult,
    check_answers,
    force_submit,
    format_quiz_duration,
    grade_quiz,
    is_quiz_timed_out,
    save_answers,
    shuffle_for_display,
    submit_answers,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/quizzes", tags=["quizzes"])

quiz_repo = InMemoryQuizRepo()

SAMPLE_QUIZ_ID = "python-basics"


def _option(
    question_id: str,
    text: str,
    position: int,
    *,
    is_correct: bool = False,
    key: str = "",
) -> Option:
    return Option(
        id=f"{question_id}-{key or text}",
        question_id=question_id,
        text=text,
        is_correct=is_correct,
        position=position,
    )


def seed_sample_quiz() -> None:
    """Seed a sample quiz for development/testing."""
    if quiz_repo.get_quiz(SAMPLE_QUIZ_ID) is not None:
        return
    qid = SAMPLE_QUIZ_ID
    quiz_repo.add_quiz(
        Quiz(
            id=qid,
            title="Python Basics",
            course_id="intro-to-python",
            passing_score=60,
            time_limit_seconds=30 * 60,
            max_attempts=3,
            questions=(
                Question(
                    id="q-types",
                    quiz_id=qid,
                    text="Which of these is an immutable sequence?",
                    type=QuestionType.SINGLE_CHOICE,
                    points=4,
                    position=0,
                    options=(
                        _option("q-types", "list", 0),
                        _option("q-types", "tuple", 1, is_correct=True),
                        _option("q-types", "dict", 2),
                    ),
                    explanation="Tuples can't be modified after creation.",
                ),
                Question(
                    id="q-falsy",
                    quiz_id=qid,
                    text="Select every falsy value.",
                    type=QuestionType.MULTIPLE_CHOICE,
                    points=6,
                    position=1,
                    options=(
                        _option("q-falsy", "0", 0, is_correct=True, key="zero"),
                        _option("q-falsy", '""', 1, is_correct=True, key="empty"),
                        _option("q-falsy", "1", 2, key="one"),
                    ),
                ),
            ),
        )
    )


seed_sample_quiz()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class OptionOut(BaseModel):
    id: str
    text: str


class QuestionOut(BaseModel):
    id: str
    text: str
    type: QuestionType
    points: float
    options: list[OptionOut]


class QuizOut(BaseModel):
    id: str
    title: str
    course_id: str | None
    passing_score: float
    time_limit_seconds: int | None
    time_limit_display: str | None
    max_attempts: int | None
    questions: list[QuestionOut]


class OptionIn(BaseModel):
    text: str = Field(min_length=1, max_length=1000)
    is_correct: bool = False


class QuestionIn(BaseModel):
    text: str = Field(min_length=1, max_length=5000)
    type: QuestionType
    points: float = Field(default=1, gt=0, le=1000)
    explanation: str | None = Field(default=None, max_length=5000)
    options: list[OptionIn] = Field(default_factory=list, max_length=20)


class QuizIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    course_id: str | None = None
    passing_score: float | None = Field(default=None, ge=0, le=100)
    time_limit_seconds: int | None = Field(default=None, gt=0)
    max_attempts: int | None = Field(default=None, ge=1)
    shuffle_questions: bool = False
    questions: list[QuestionIn] = Field(min_length=1, max_length=200)


class AnswerIn(BaseModel):
    question_id: str
    selected_option_ids: list[str] = Field(default_factory=list)
    text: str | None = Field(default=None, max_length=10000)


class AnswersIn(BaseModel):
    answers: list[AnswerIn] = Field(default_factory=list)


class AttemptOut(BaseModel):
    id: str
    quiz_id: str
    student_id: str
    attempt_no: int
    status: str  # in_progress|submitted
    started_at: datetime.datetime
    submitted_at: datetime.datetime | None
    score: float | None
    passed: bool | None


class QuestionResultOut(BaseModel):
    question_id: str
    question_text: str
    outcome: str
    points_awarded: float | None
    points_possible: float
    correct_answer: str | None
    student_answer: str | None
    explanation: str | None


class QuizResultOut(BaseModel):
    attempt_id: str
    quiz_id: str
    score: float
    max_score: float
    percentage: float
    passed: bool
    timed_out: bool
    requires_manual_review: bool
    pending_review_points: float
    questions: list[QuestionResultOut]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _quiz_out(quiz: Quiz) -> QuizOut:
    questions = list(quiz.questions)
    if quiz.shuffle_questions:
        questions = shuffle_for_display(questions)

    def _options(q: Question) -> list[Option]:
        if quiz.shuffle_questions:
            return shuffle_for_display(q.options)
        return list(q.options)

    limit = None
    if quiz.time_limit_seconds is not None:
        limit = format_quiz_duration(math.ceil(quiz.time_limit_seconds / 60))

    return QuizOut(
        id=quiz.id,
        title=quiz.title,
        course_id=quiz.course_id,
        passing_score=quiz.passing_score,
        time_limit_seconds=quiz.time_limit_seconds,
        time_limit_display=limit,
        max_attempts=quiz.max_attempts,
        questions=[
            QuestionOut(
                id=q.id,
                text=q.text,
                type=q.type,
                points=q.points,
                options=[OptionOut(id=o.id, text=o.text) for o in _options(q)],
            )
            for q in questions
        ],
    )


def _attempt_out(attempt: Attempt) -> AttemptOut:
    return AttemptOut(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        student_id=attempt.student_id,
        attempt_no=attempt.attempt_no,
        status="submitted" if attempt.is_submitted else "in_progress",
        started_at=attempt.started_at,
        submitted_at=attempt.submitted_at,
        score=attempt.score,
        passed=attempt.passed,
    )


def _result_out(result: QuizResult) -> QuizResultOut:
    return QuizResultOut(
        attempt_id=result.attempt_id,
        quiz_id=result.quiz_id,
        score=result.score,
        max_score=result.max_score,
        percentage=result.percentage,
        passed=result.passed,
        timed_out=result.timed_out,
        requires_manual_review=result.requires_manual_review,
        pending_review_points=result.pending_review_points,
        questions=[
            QuestionResultOut(
                question_id=r.question_id,
                question_text=r.question_text,
                outcome=r.outcome.value,
                points_awarded=r.points_awarded,
                points_possible=r.points_possible,
                correct_answer=r.correct_answer,
                student_answer=r.student_answer,
                explanation=r.explanation,
            )
            for r in result.per_question
        ],
    )


def _to_answers(body: AnswersIn) -> list[Answer]:
    return [
        Answer(
            question_id=a.question_id,
            selected_option_ids=frozenset(a.selected_option_ids),
            text=a.text,
        )
        for a in body.answers
    ]


def _build_quiz(body: QuizIn) -> Quiz:
    """Assign ids and check every answer key before the quiz is stored."""
    quiz_id = str(uuid.uuid4())
    questions: list[Question] = []
    for position, q in enumerate(body.questions):
        question_id = f"{quiz_id}-q{position + 1}"
        question = Question(
            id=question_id,
            quiz_id=quiz_id,
            text=q.text,
            type=q.type,
            points=q.points,
            position=position,
            explanation=q.explanation,
            options=tuple(
                Option(
                    id=f"{question_id}-o{i + 1}",
                    question_id=question_id,
                    text=o.text,
                    is_correct=o.is_correct,
                    position=i,
                )
                for i, o in enumerate(q.options)
            ),
        )
        if question.type.is_choice:
            check_answer_key(question)
        elif question.options:
            raise ConfigurationError(
                f"question {position + 1} is short_answer and takes no options"
            )
        questions.append(question)

    passing = body.passing_score
    return Quiz(
        id=quiz_id,
        title=body.title,
        course_id=body.course_id,
        passing_score=SETTINGS.default_passing_score if passing is None else passing,
        time_limit_seconds=body.time_limit_seconds,
        max_attempts=body.max_attempts,
        shuffle_questions=body.shuffle_questions,
        questions=tuple(questions),
    )


def _require_quiz(quiz_id: str) -> Quiz:
    quiz = quiz_repo.get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="quiz not found")
    return quiz


def _require_own_attempt(
    quiz_id: str, attempt_id: str, principal: Principal
) -> Attempt:
    attempt = quiz_repo.get_attempt(attempt_id)
    # Someone else's attempt reads as missing, not forbidden.
    if (
        attempt is None
        or attempt.quiz_id != quiz_id
        or attempt.student_id != principal.user_id
    ):
        raise HTTPException(status_code=404, detail="attempt not found")
    return attempt


def _invalid_answers(exc: GradingValidationError) -> HTTPException:
    GRADING_FAILURES.labels(kind=type(exc).__name__).inc()
    logger.warning("Rejected quiz answers: %s", exc)
    return HTTPException(
        status_code=422,
        detail={"kind": type(exc).__name__, "message": str(exc)},
    )


async def _record_in_gradebook(
    quiz: Quiz, attempt: Attempt, result: QuizResult
) -> None:
    """Keep the student's best graded attempt as the quiz's gradebook item.

    Points still pending manual review are left out of both the score and
    the maximum, so an unreviewed answer doesn't count as wrong.
    """
    if quiz.course_id is None:
        return
    graded_max = result.max_score - result.pending_review_points
    if graded_max <= 0:
        logger.info(
            "Nothing auto-graded yet, gradebook unchanged quiz=%s attempt=%s",
            quiz.id,
            attempt.id,
        )
        return
    candidate = GradeItem(
        id=f"quiz:{quiz.id}:{attempt.student_id}",
        student_id=attempt.student_id,
        category="quiz",
        label=quiz.title,
        raw_score=result.score,
        max_score=graded_max,
        submitted_at=attempt.submitted_at,
        source="quiz",
    )
    existing = gradebook_repo.get_item(quiz.course_id, candidate.id)
    best = keep_best(existing, candidate)
    if best is not existing:
        gradebook_repo.upsert_item(quiz.course_id, best)
        await invalidate_course(quiz.course_id)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=QuizOut, status_code=status.HTTP_201_CREATED)
def create_quiz(
    body: QuizIn,
    principal: Annotated[Principal, Depends(require_instructor)],
) -> QuizOut:
    try:
        quiz = _build_quiz(body)
    except ConfigurationError as exc:
        raise_for_failure(GradingFailure(exc, scope=body.title))
    quiz_repo.add_quiz(quiz)
    logger.info(
        "Quiz created quiz=%s course=%s questions=%d by=%s",
        quiz.id,
        quiz.course_id,
        len(quiz.questions),
        principal.user_id,
    )
    # Authors see the stored order; shuffling applies to takers only.
    return _quiz_out(replace(quiz, shuffle_questions=False))


@router.get("/{quiz_id}", response_model=QuizOut)
def get_quiz(
    quiz_id: str,
    _principal: Annotated[Principal, Depends(require_user)],
) -> QuizOut:
    return _quiz_out(_require_quiz(quiz_id))


@router.get("/{quiz_id}/attempts", response_model=list[AttemptOut])
def list_my_attempts(
    quiz_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[AttemptOut]:
    _require_quiz(quiz_id)
    attempts = quiz_repo.list_attempts(quiz_id, principal.user_id)
    return [_attempt_out(a) for a in attempts]


@router.post(
    "/{quiz_id}/attempts",
    response_model=AttemptOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(
    quiz_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    quiz = _require_quiz(quiz_id)
    attempts = quiz_repo.list_attempts(quiz_id, principal.user_id)

    if any(not a.is_submitted for a in attempts):
        raise HTTPException(status_code=409, detail="attempt already in progress")
    if quiz.max_attempts is not None and len(attempts) >= quiz.max_attempts:
        logger.info(
            "Attempt limit reached user=%s quiz=%s max=%d",
            principal.user_id,
            quiz_id,
            quiz.max_attempts,
        )
        raise HTTPException(
            status_code=409,
            detail=f"maximum attempts reached ({quiz.max_attempts})",
        )

    attempt = Attempt.start(
        quiz_id=quiz_id,
        student_id=principal.user_id,
        started_at=_now(),
        attempt_no=len(attempts) + 1,
    )
    quiz_repo.save_attempt(attempt)

    if quiz.course_id is not None and not gradebook_repo.is_enrolled(
        quiz.course_id, principal.user_id
    ):
        gradebook_repo.enroll(
            quiz.course_id,
            StudentRef(student_id=principal.user_id, name=principal.display_name),
        )
        await invalidate_course(quiz.course_id)

    return _attempt_out(attempt)


@router.put("/{quiz_id}/attempts/{attempt_id}/answers", response_model=AttemptOut)
def save_attempt_answers(
    quiz_id: str,
    attempt_id: str,
    body: AnswersIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> AttemptOut:
    quiz = _require_quiz(quiz_id)
    attempt = _require_own_attempt(quiz_id, attempt_id, principal)
    if attempt.is_submitted:
        raise HTTPException(status_code=409, detail="attempt already submitted")
    if is_quiz_timed_out(attempt, quiz):
        raise HTTPException(
            status_code=409, detail="time limit exceeded; submit the attempt"
        )

    answers = _to_answers(body)
    try:
        check_answers(quiz, answers)
    except GradingValidationError as exc:
        raise _invalid_answers(exc) from None

    attempt = save_answers(attempt, answers)
    quiz_repo.save_attempt(attempt)
    return _attempt_out(attempt)


@router.post("/{quiz_id}/attempts/{attempt_id}/submit", response_model=QuizResultOut)
async def submit_attempt(
    quiz_id: str,
    attempt_id: str,
    body: AnswersIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> QuizResultOut:
    quiz = _require_quiz(quiz_id)
    attempt = _require_own_attempt(quiz_id, attempt_id, principal)
    if attempt.is_submitted:
        raise HTTPException(status_code=409, detail="attempt already submitted")

    now = _now()
    timed_out = is_quiz_timed_out(attempt, quiz, now)
    if timed_out:
        if body.answers:
            logger.info(
                "Ignoring %d late answer(s) on timed-out attempt=%s",
                len(body.answers),
                attempt_id,
            )
        submitted = force_submit(attempt, now)
    else:
        # Answers sent with the submit override saved ones question by question.
        merged = save_answers(attempt, _to_answers(body))
        submitted = submit_answers(attempt, merged.answers, now)

    try:
        result = grade_quiz(quiz, submitted, timed_out=timed_out)
    except GradingValidationError as exc:
        raise _invalid_answers(exc) from None
    if isinstance(result, GradingFailure):
        raise_for_failure(result)

    graded = replace(submitted, score=result.percentage, passed=result.passed)
    quiz_repo.save_attempt(graded)
    await _record_in_gradebook(quiz, graded, result)

    outcome = "timed_out" if timed_out else ("passed" if result.passed else "failed")
    QUIZ_ATTEMPTS_GRADED.labels(result=outcome).inc()
    logger.info(
        "Quiz graded user=%s quiz=%s attempt=%s score=%s/%s result=%s",
        principal.user_id,
        quiz_id,
        attempt_id,
        result.score,
        result.max_score,
        outcome,
    )
    return _result_out(result)
