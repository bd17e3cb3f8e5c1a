from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

CONCLUDE_ELAPSED_FRACTION = 0.9
CONCLUDE_REMAINING_MINUTES = 3.0
DYNAMIC_MIN_REMAINING_FRACTION = 0.25
DYNAMIC_MIN_REMAINING_MINUTES = 2.0


@dataclass(frozen=True)
class TimeBudget:
    elapsed_minutes: float
    remaining_minutes: float
    elapsed_fraction: float
    conclusion_due: bool
    dynamic_allowed: bool

    @property
    def remaining_fraction(self) -> float:
        return 1.0 - self.elapsed_fraction


UNBOUNDED = TimeBudget(
    elapsed_minutes=0.0,
    remaining_minutes=0.0,
    elapsed_fraction=0.0,
    conclusion_due=False,
    dynamic_allowed=False,
)


def evaluate_time_budget(started_at: datetime | None, now: datetime, duration_minutes: float | None) -> TimeBudget:
    """
    Decide where the interview stands against its allotted duration.

    Without a start time or a positive duration nothing can be measured, so the
    interview is neither due to conclude nor eligible for dynamic questions.
    """
    duration = float(duration_minutes or 0.0)
    if started_at is None or duration <= 0:
        return UNBOUNDED

    elapsed = (now - started_at).total_seconds() / 60.0
    remaining = duration - elapsed
    elapsed_fraction = elapsed / duration
    remaining_fraction = remaining / duration

    return TimeBudget(
        elapsed_minutes=elapsed,
        remaining_minutes=remaining,
        elapsed_fraction=elapsed_fraction,
        conclusion_due=elapsed_fraction >= CONCLUDE_ELAPSED_FRACTION or remaining <= CONCLUDE_REMAINING_MINUTES,
        dynamic_allowed=remaining_fraction > DYNAMIC_MIN_REMAINING_FRACTION and remaining > DYNAMIC_MIN_REMAINING_MINUTES,
    )
