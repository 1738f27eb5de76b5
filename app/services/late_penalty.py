"""Late-submission penalty.

Partial days round up against the student: one minute late counts as a
full day.  The multiplier is always clamped to [0, 1].
"""

from __future__ import annotations

import datetime
import math

from app.models.gradebook import LatePenaltyPolicy
from app.services.grading_errors import GradingValidationError

_ONE_DAY = datetime.timedelta(days=1)


def days_late(submitted_at: datetime.datetime, due_at: datetime.datetime) -> int:
    if submitted_at <= due_at:
        return 0
    return math.ceil((submitted_at - due_at) / _ONE_DAY)


def calculate_late_penalty(
    submitted_at: datetime.datetime,
    due_at: datetime.datetime,
    policy: LatePenaltyPolicy,
) -> float:
    """Return the score multiplier for a submission made at ``submitted_at``."""
    if policy.percent_per_day < 0:
        raise GradingValidationError(
            f"percent_per_day must be >= 0 (got {policy.percent_per_day!r})"
        )
    if policy.cutoff_days is not None and policy.cutoff_days < 0:
        raise GradingValidationError(
            f"cutoff_days must be >= 0 (got {policy.cutoff_days!r})"
        )

    late = days_late(submitted_at, due_at)
    if late == 0:
        return 1.0
    if policy.cutoff_days is not None and late > policy.cutoff_days:
        return 0.0
    return min(1.0, max(0.0, 1.0 - policy.percent_per_day * late))


def apply_late_penalty(raw_score: float, multiplier: float) -> float:
    return raw_score * min(1.0, max(0.0, multiplier))
