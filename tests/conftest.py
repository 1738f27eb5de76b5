from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.api.gradebook import gradebook_repo, seed_sample_gradebook
from app.api.quizzes import quiz_repo, seed_sample_quiz
from app.main import app
from app.models.quiz import Option, Question, QuestionType, Quiz
from app.services import token_service
from app.services.cache import cache_service

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Start every test from the seeded sample course and quiz."""
    quiz_repo.clear()
    gradebook_repo.clear()
    seed_sample_quiz()
    seed_sample_gradebook()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-student",
    roles: list[str] | None = None,
    name: str | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles, name=name)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    """Token with the default role (student)."""
    return mint_token()


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username="test-instructor", roles=["instructor"])


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------

T0 = datetime(2024, 1, 10, 9, 0, tzinfo=UTC)


def choice_question(
    qid: str,
    correct: tuple[str, ...],
    *,
    others: tuple[str, ...] = (),
    type: QuestionType = QuestionType.SINGLE_CHOICE,
    points: float = 1,
    quiz_id: str = "quiz-1",
) -> Question:
    """Question whose options are ``correct`` (marked correct) then ``others``."""
    options = tuple(
        Option(id=oid, question_id=qid, text=oid.upper(), is_correct=True, position=i)
        for i, oid in enumerate(correct)
    ) + tuple(
        Option(id=oid, question_id=qid, text=oid.upper(), position=len(correct) + i)
        for i, oid in enumerate(others)
    )
    return Question(
        id=qid,
        quiz_id=quiz_id,
        text=f"Question {qid}?",
        type=type,
        options=options,
        points=points,
    )


def make_quiz(*questions: Question, passing_score: float = 60, **kwargs) -> Quiz:
    return Quiz(
        id="quiz-1",
        title="Quiz One",
        questions=questions,
        passing_score=passing_score,
        **kwargs,
    )
