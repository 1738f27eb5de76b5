from __future__ import annotations

from dataclasses import replace

import pytest

from app.models.quiz import Attempt
from app.repos.quiz_repo import InMemoryQuizRepo
from tests.conftest import T0, choice_question, make_quiz


def _attempt(attempt_id: str, attempt_no: int, student_id: str = "s1") -> Attempt:
    return Attempt(
        id=attempt_id,
        quiz_id="quiz-1",
        student_id=student_id,
        started_at=T0,
        attempt_no=attempt_no,
    )


def test_add_and_get_quiz() -> None:
    repo = InMemoryQuizRepo()
    quiz = make_quiz(choice_question("q1", ("a",), others=("b",)))
    repo.add_quiz(quiz)

    assert repo.get_quiz("quiz-1") is quiz
    assert repo.get_quiz("missing") is None


def test_add_quiz_rejects_duplicate_id() -> None:
    repo = InMemoryQuizRepo()
    repo.add_quiz(make_quiz())

    with pytest.raises(ValueError, match="already exists"):
        repo.add_quiz(make_quiz())


def test_list_attempts_is_ordered_and_scoped() -> None:
    repo = InMemoryQuizRepo()
    repo.save_attempt(_attempt("a2", 2))
    repo.save_attempt(_attempt("a1", 1))
    repo.save_attempt(_attempt("other", 1, student_id="s2"))

    attempts = repo.list_attempts("quiz-1", "s1")

    assert [a.id for a in attempts] == ["a1", "a2"]
    assert repo.list_attempts("quiz-2", "s1") == []


def test_save_attempt_replaces_same_id() -> None:
    repo = InMemoryQuizRepo()
    started = _attempt("a1", 1)
    repo.save_attempt(started)
    repo.save_attempt(replace(started, submitted_at=T0, score=80.0, passed=True))

    stored = repo.get_attempt("a1")
    assert stored is not None
    assert stored.submitted_at == T0
    assert stored.passed is True
    assert len(repo.list_attempts("quiz-1", "s1")) == 1


def test_clear_empties_everything() -> None:
    repo = InMemoryQuizRepo()
    repo.add_quiz(make_quiz())
    repo.save_attempt(_attempt("a1", 1))

    repo.clear()

    assert repo.get_quiz("quiz-1") is None
    assert repo.get_attempt("a1") is None
