"""Error taxonomy shared by the grading and gradebook services.

Grading functions are pure.  Most business conditions come back as a
GradingFailure value rather than an exception, so a course-wide run can
record one student's failure and keep going.  The one exception is an
answer that references an option the question doesn't have: that is a
data-integrity bug upstream, so it raises GradingValidationError at once.
"""

from __future__ import annotations

from dataclasses import dataclass


class GradingError(Exception):
    pass


class GradingValidationError(GradingError, ValueError):
    """Malformed input: unknown option id, negative score, max score <= 0."""


class ConfigurationError(GradingError):
    """Quiz or category-weight setup that can't be normalized into shape."""


class UnsupportedOperationError(GradingError):
    """Raised when asked to auto-grade a question that needs a human."""


@dataclass(frozen=True, slots=True)
class GradingFailure:
    """Typed failure result for one grading scope (answer, attempt, student)."""

    error: GradingError
    scope: str | None = None

    @property
    def kind(self) -> str:
        return type(self.error).__name__

    @property
    def message(self) -> str:
        return str(self.error)
