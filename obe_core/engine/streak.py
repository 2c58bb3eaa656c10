"""
obe_core.engine.streak — Daily Streak Transitions
==================================================

Pure calculation — no database I/O.  Given the stored streak state and
today's UTC calendar date, decide the next streak count.

Transition rules (``d`` = days since ``last_login_date``):

* no record / never logged in → 1
* ``d == 0`` → unchanged, nothing to write
* ``d == 1`` → +1
* ``d == 2`` with a freeze available → +1, one freeze consumed
* anything else → reset to 1
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date

__all__ = [
    "MILESTONE_XP",
    "PEER_ANNOUNCED_MILESTONES",
    "STREAK_MILESTONES",
    "StreakState",
    "StreakUpdate",
    "calculate_streak_update",
    "check_milestone",
    "days_between",
    "milestone_progress",
    "next_milestone",
]

STREAK_MILESTONES: tuple[int, ...] = (7, 14, 30, 60, 100)

MILESTONE_XP: dict[int, int] = {
    7: 100,
    14: 100,
    30: 250,
    60: 250,
    100: 500,
}

# Milestones celebrated to classmates (unless the achiever is anonymous)
PEER_ANNOUNCED_MILESTONES: frozenset[int] = frozenset({7, 30, 100})


@dataclass(frozen=True, slots=True)
class StreakState:
    """The stored slice of ``student_gamification`` the tracker needs."""

    streak_count: int = 0
    last_login_date: date | None = None
    streak_freezes_available: int = 0


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    new_streak_count: int
    streak_frozen: bool = False
    freeze_consumed: bool = False
    milestone_reached: int | None = None
    is_reset: bool = False
    is_new_day: bool = True


def days_between(a: date, b: date) -> int:
    """Absolute number of calendar days between *a* and *b*."""
    return abs((b - a).days)


def check_milestone(streak_count: int) -> int | None:
    """Return *streak_count* if it is exactly a milestone, else ``None``."""
    return streak_count if streak_count in STREAK_MILESTONES else None


def calculate_streak_update(state: StreakState | None, today: date) -> StreakUpdate:
    """Compute the streak transition for a visit on *today*."""
    if state is None or state.last_login_date is None:
        return StreakUpdate(new_streak_count=1, milestone_reached=check_milestone(1))

    day_diff = days_between(state.last_login_date, today)

    if day_diff == 0:
        return StreakUpdate(new_streak_count=state.streak_count, is_new_day=False)

    if day_diff == 1:
        new_count = state.streak_count + 1
        return StreakUpdate(
            new_streak_count=new_count,
            milestone_reached=check_milestone(new_count),
        )

    if day_diff == 2 and state.streak_freezes_available > 0:
        new_count = state.streak_count + 1
        return StreakUpdate(
            new_streak_count=new_count,
            streak_frozen=True,
            freeze_consumed=True,
            milestone_reached=check_milestone(new_count),
        )

    return StreakUpdate(
        new_streak_count=1,
        milestone_reached=check_milestone(1),
        is_reset=True,
    )


# ---------------------------------------------------------------------------
# Progress helpers (read side)
# ---------------------------------------------------------------------------
def next_milestone(streak_count: int) -> int | None:
    """Next milestone strictly above *streak_count*; ``None`` once all passed."""
    for milestone in STREAK_MILESTONES:
        if streak_count < milestone:
            return milestone
    return None


def milestone_progress(streak_count: int) -> int:
    """Percent of the way from the previous milestone (or 0) to the next."""
    nxt = next_milestone(streak_count)
    if nxt is None:
        return 100

    idx = STREAK_MILESTONES.index(nxt)
    prev = STREAK_MILESTONES[idx - 1] if idx > 0 else 0
    span = nxt - prev
    return math.floor((streak_count - prev) / span * 100 + 0.5)
