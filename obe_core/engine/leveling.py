"""
obe_core.engine.leveling — Level Table & Bonus Multipliers
===========================================================

Single canonical implementation of the leveling formula.  Pure functions —
no database I/O.

Level table (levels 1..50)::

    L(1) = 0,  L(2) = 100,  L(3) = 250
    L(n) = floor(50 * n ** 1.5)   for n >= 4

The table is strictly increasing, so the level for a total is the greatest
``n`` with ``L(n) <= total``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

__all__ = [
    "LEVEL_THRESHOLDS",
    "LevelProgress",
    "LevelThreshold",
    "MAX_LEVEL",
    "apply_bonus_multiplier",
    "derive_level",
    "highest_multiplier",
    "level_progress",
    "level_title",
    "xp_for_level",
]

MAX_LEVEL = 50


@dataclass(frozen=True, slots=True)
class LevelThreshold:
    level: int
    xp_required: int
    title: str


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a lifetime XP total sits inside the level table."""

    level: int
    title: str
    xp_total: int
    current_level_xp: int
    next_level_xp: int | None
    progress: float  # 0.0 – 1.0 toward the next level; 1.0 at MAX_LEVEL

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "title": self.title,
            "xp_total": self.xp_total,
            "current_level_xp": self.current_level_xp,
            "next_level_xp": self.next_level_xp,
            "progress": self.progress,
        }


# ---------------------------------------------------------------------------
# Table generation
# ---------------------------------------------------------------------------
def level_title(level: int) -> str:
    """Display title for *level*."""
    if level <= 1:
        return "Newcomer"
    if level == 2:
        return "Beginner"
    if level == 3:
        return "Learner"
    if level <= 5:
        return "Apprentice"
    if level <= 10:
        return "Scholar"
    if level <= 15:
        return "Adept"
    if level <= 20:
        return "Expert"
    if level <= 30:
        return "Master"
    if level <= 40:
        return "Grandmaster"
    return "Legend"


def xp_for_level(level: int) -> int:
    """XP required to reach *level* (``L(n)``)."""
    if level <= 1:
        return 0
    if level == 2:
        return 100
    if level == 3:
        return 250
    return math.floor(50 * level ** 1.5)


def _generate_thresholds() -> tuple[LevelThreshold, ...]:
    return tuple(
        LevelThreshold(level=n, xp_required=xp_for_level(n), title=level_title(n))
        for n in range(1, MAX_LEVEL + 1)
    )


LEVEL_THRESHOLDS: tuple[LevelThreshold, ...] = _generate_thresholds()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def derive_level(xp_total: int) -> int:
    """Greatest level whose threshold is <= *xp_total*.

    Negative totals clamp to level 1.
    """
    if xp_total < 0:
        return 1

    level = 1
    for threshold in LEVEL_THRESHOLDS:
        if xp_total >= threshold.xp_required:
            level = threshold.level
        else:
            break
    return level


def level_progress(xp_total: int) -> LevelProgress:
    """Describe progress from the current level toward the next one."""
    level = derive_level(xp_total)
    current = xp_for_level(level)
    if level >= MAX_LEVEL:
        return LevelProgress(
            level=level,
            title=level_title(level),
            xp_total=xp_total,
            current_level_xp=current,
            next_level_xp=None,
            progress=1.0,
        )

    nxt = xp_for_level(level + 1)
    span = nxt - current
    gained = max(xp_total, 0) - current
    return LevelProgress(
        level=level,
        title=level_title(level),
        xp_total=xp_total,
        current_level_xp=current,
        next_level_xp=nxt,
        progress=round(min(max(gained / span, 0.0), 1.0), 4),
    )


# ---------------------------------------------------------------------------
# Bonus multipliers
# ---------------------------------------------------------------------------
def highest_multiplier(multipliers: Iterable[float]) -> float | None:
    """Highest of the currently active multipliers, or ``None`` if none.

    Multipliers never stack; only the largest one applies to a grant.
    """
    values = [float(m) for m in multipliers if m is not None]
    if not values:
        return None
    return max(values)


def apply_bonus_multiplier(amount: int, multiplier: float | None) -> int:
    """Scale *amount* by *multiplier*, flooring to an integer.

    Multipliers of 1 or below (or ``None``) leave the amount unchanged.
    """
    if multiplier is None or multiplier <= 1:
        return amount
    return math.floor(amount * multiplier)
