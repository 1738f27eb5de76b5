from __future__ import annotations

from typing import Protocol

from app.models.quiz import Attempt, Quiz


class QuizRepo(Protocol):
    def get_quiz(self, quiz_id: str) -> Quiz | None: ...
    def add_quiz(self, quiz: Quiz) -> None: ...
    def get_attempt(self, attempt_id: str) -> Attempt | None: ...
    def list_attempts(self, quiz_id: str, student_id: str) -> list[Attempt]: ...
    def save_attempt(self, attempt: Attempt) -> None: ...


class InMemoryQuizRepo:
    def __init__(self) -> None:
        self._quizzes: dict[str, Quiz] = {}
        self._attempts: dict[str, Attempt] = {}

    def get_quiz(self, quiz_id: str) -> Quiz | None:
        return self._quizzes.get(quiz_id)

    def add_quiz(self, quiz: Quiz) -> None:
        if quiz.id in self._quizzes:
            raise ValueError("quiz already exists")
        self._quizzes[quiz.id] = quiz

    def get_attempt(self, attempt_id: str) -> Attempt | None:
        return self._attempts.get(attempt_id)

    def list_attempts(self, quiz_id: str, student_id: str) -> list[Attempt]:
        return sorted(
            (
                a
                for a in self._attempts.values()
                if a.quiz_id == quiz_id and a.student_id == student_id
            ),
            key=lambda a: a.attempt_no,
        )

    def save_attempt(self, attempt: Attempt) -> None:
        # Upsert: starting inserts, submitting replaces the same id.
        self._attempts[attempt.id] = attempt

    def clear(self) -> None:
        self._quizzes.clear()
        self._attempts.clear()
