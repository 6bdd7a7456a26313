"""Daily visit streak transitions for cbtaro-stats."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cbtaro_stats.daykey import CUTOFF_HOUR_UTC, day_key, days_between


class Transition(str, Enum):
    FIRST_VISIT = "first_visit"
    SAME_DAY = "same_day"
    CONSECUTIVE = "consecutive"
    RESET = "reset"
    OUT_OF_ORDER = "out_of_order"


@dataclass(frozen=True)
class StreakState:
    streak: int
    last_visit_day_key: str | None  # YYYY-MM-DD
    transition: Transition

    @property
    def changed(self) -> bool:
        return self.transition not in (Transition.SAME_DAY, Transition.OUT_OF_ORDER)


def advance_streak(
    previous_streak: int,
    previous_last_visit_day_key: str | None,
    now: int | float | datetime,
    cutoff_hour_utc: int = CUTOFF_HOUR_UTC,
) -> StreakState:
    """Compute the streak after a visit at ``now``.

    Rules:
    - No previous visit: streak = 1
    - Same day key: streak unchanged, day key unchanged
    - Next day: streak + 1
    - Gap of more than one day: streak resets to 1
    - Earlier day key (clock skew): no-op
    """
    current = day_key(now, cutoff_hour_utc)

    if not previous_last_visit_day_key:
        return StreakState(1, current, Transition.FIRST_VISIT)

    diff = days_between(previous_last_visit_day_key, current)
    if diff == 0:
        return StreakState(previous_streak, previous_last_visit_day_key, Transition.SAME_DAY)
    if diff == 1:
        return StreakState(previous_streak + 1, current, Transition.CONSECUTIVE)
    if diff > 1:
        return StreakState(1, current, Transition.RESET)
    return StreakState(previous_streak, previous_last_visit_day_key, Transition.OUT_OF_ORDER)
