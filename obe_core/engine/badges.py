"""
obe_core.engine.badges — Badge Definitions & Condition Checks
==============================================================

Handler-registry evaluation of badge conditions.  Each badge id maps to a
pure predicate over a :class:`BadgeContext` snapshot; the service layer
fills the snapshot from storage and persists whatever this module returns.

Which categories are evaluated depends on the trigger:

* streak badges — ``streak_update`` and ``xp_award``
* academic badges — ``submission`` and ``grade``
* engagement badges — ``journal`` and ``xp_award``
* mystery badges — every trigger

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from obe_core.database.models import BadgeCategory, BadgeTrigger

logger = logging.getLogger(__name__)

ALL_CLOS_MET_PERCENT = 70.0
HABITS_PER_DAY = 4
PERFECT_WEEK_DAYS = 7
JOURNAL_BADGE_ENTRIES = 10
SPEED_DEMON_HOURS = 1.0
NIGHT_OWL_SUBMISSIONS = 3
NIGHT_HOURS = range(0, 5)   # UTC
PERFECTIONIST_ASSIGNMENTS = 5


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeDef:
    id: str
    name: str
    category: BadgeCategory
    xp_reward: int
    rare: bool = False   # announced to course peers when earned


BADGE_DEFINITIONS: tuple[BadgeDef, ...] = (
    BadgeDef("streak_7", "7-Day Warrior", BadgeCategory.STREAK, 50),
    BadgeDef("streak_14", "Fortnight Fighter", BadgeCategory.STREAK, 75),
    BadgeDef("streak_30", "30-Day Legend", BadgeCategory.STREAK, 100, rare=True),
    BadgeDef("streak_60", "Dedication King", BadgeCategory.STREAK, 150, rare=True),
    BadgeDef("streak_100", "Century Legend", BadgeCategory.STREAK, 250, rare=True),
    BadgeDef("first_submission", "First Steps", BadgeCategory.ACADEMIC, 25),
    BadgeDef("perfect_score", "Flawless", BadgeCategory.ACADEMIC, 75),
    BadgeDef("all_clos_met", "Outcome Achiever", BadgeCategory.ACADEMIC, 100),
    BadgeDef("journal_10", "Reflective Mind", BadgeCategory.ENGAGEMENT, 50),
    BadgeDef("perfect_week", "Perfect Week", BadgeCategory.ENGAGEMENT, 100),
    BadgeDef("speed_demon", "Speed Demon", BadgeCategory.MYSTERY, 75, rare=True),
    BadgeDef("night_owl", "Night Owl", BadgeCategory.MYSTERY, 75, rare=True),
    BadgeDef("perfectionist", "Perfectionist", BadgeCategory.MYSTERY, 100, rare=True),
)

BADGES_BY_ID: dict[str, BadgeDef] = {b.id: b for b in BADGE_DEFINITIONS}
BADGE_XP: dict[str, int] = {b.id: b.xp_reward for b in BADGE_DEFINITIONS}
RARE_BADGES: frozenset[str] = frozenset(b.id for b in BADGE_DEFINITIONS if b.rare)

CATEGORY_TRIGGERS: dict[BadgeCategory, frozenset[BadgeTrigger]] = {
    BadgeCategory.STREAK: frozenset({BadgeTrigger.STREAK_UPDATE, BadgeTrigger.XP_AWARD}),
    BadgeCategory.ACADEMIC: frozenset({BadgeTrigger.SUBMISSION, BadgeTrigger.GRADE}),
    BadgeCategory.ENGAGEMENT: frozenset({BadgeTrigger.JOURNAL, BadgeTrigger.XP_AWARD}),
    BadgeCategory.MYSTERY: frozenset(BadgeTrigger),
}


def categories_for(trigger: BadgeTrigger) -> set[BadgeCategory]:
    return {cat for cat, triggers in CATEGORY_TRIGGERS.items() if trigger in triggers}


# ---------------------------------------------------------------------------
# Badge Context — passed to every condition
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeContext:
    """Snapshot of a student's activity.

    Parameters
    ----------
    streak_count : Current daily login streak.
    submission_count : Submissions the student has made.
    perfect_assignment_count : Distinct assignments graded at 100%.
    course_clo_attainment : course id → {CLO id → attainment percent or
        None when the student has no attainment for it yet}.
    journal_entry_count : Journal entries written.
    habits_by_date : date → habit types completed that day.
    submission_delays_hours : For each submission, hours between the
        assignment being published and the submission.
    submission_times : Submission timestamps.
    today : Reference date for the perfect-week window.
    """

    streak_count: int = 0
    submission_count: int = 0
    perfect_assignment_count: int = 0
    course_clo_attainment: dict[str, dict[str, float | None]] = field(default_factory=dict)
    journal_entry_count: int = 0
    habits_by_date: dict[date, frozenset[str]] = field(default_factory=dict)
    submission_delays_hours: tuple[float, ...] = ()
    submission_times: tuple[datetime, ...] = ()
    today: date | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def hours_between(start: datetime, end: datetime) -> float:
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def consecutive_perfect_days(
    habits_by_date: Mapping[date, Iterable[str]],
    today: date,
    *,
    window: int = PERFECT_WEEK_DAYS,
    habits_required: int = HABITS_PER_DAY,
) -> int:
    """Length of the run of complete days ending on *today*, within *window*."""
    run = 0
    for offset in range(window):
        day = today - timedelta(days=offset)
        if len(set(habits_by_date.get(day, ()))) < habits_required:
            break
        run += 1
    return run


def course_clos_all_met(
    course_clo_attainment: Mapping[str, Mapping[str, float | None]],
    threshold: float = ALL_CLOS_MET_PERCENT,
) -> bool:
    """True if some course has CLOs and every one is at or above *threshold*."""
    for clos in course_clo_attainment.values():
        if not clos:
            continue
        if all(pct is not None and pct >= threshold for pct in clos.values()):
            return True
    return False


# ---------------------------------------------------------------------------
# Condition handlers — pure functions ctx → bool
# ---------------------------------------------------------------------------
def _streak_at_least(days: int) -> Callable[[BadgeContext], bool]:
    def check(ctx: BadgeContext) -> bool:
        return ctx.streak_count >= days
    return check


def _check_first_submission(ctx: BadgeContext) -> bool:
    return ctx.submission_count >= 1


def _check_perfect_score(ctx: BadgeContext) -> bool:
    return ctx.perfect_assignment_count >= 1


def _check_all_clos_met(ctx: BadgeContext) -> bool:
    return course_clos_all_met(ctx.course_clo_attainment)


def _check_journal_10(ctx: BadgeContext) -> bool:
    return ctx.journal_entry_count >= JOURNAL_BADGE_ENTRIES


def _check_perfect_week(ctx: BadgeContext) -> bool:
    if ctx.today is None:
        return False
    return consecutive_perfect_days(ctx.habits_by_date, ctx.today) >= PERFECT_WEEK_DAYS


def _check_speed_demon(ctx: BadgeContext) -> bool:
    return any(0 <= h <= SPEED_DEMON_HOURS for h in ctx.submission_delays_hours)


def _check_night_owl(ctx: BadgeContext) -> bool:
    night = sum(1 for t in ctx.submission_times if as_utc(t).hour in NIGHT_HOURS)
    return night >= NIGHT_OWL_SUBMISSIONS


def _check_perfectionist(ctx: BadgeContext) -> bool:
    return ctx.perfect_assignment_count >= PERFECTIONIST_ASSIGNMENTS


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
BADGE_CHECKS: dict[str, Callable[[BadgeContext], bool]] = {
    "streak_7": _streak_at_least(7),
    "streak_14": _streak_at_least(14),
    "streak_30": _streak_at_least(30),
    "streak_60": _streak_at_least(60),
    "streak_100": _streak_at_least(100),
    "first_submission": _check_first_submission,
    "perfect_score": _check_perfect_score,
    "all_clos_met": _check_all_clos_met,
    "journal_10": _check_journal_10,
    "perfect_week": _check_perfect_week,
    "speed_demon": _check_speed_demon,
    "night_owl": _check_night_owl,
    "perfectionist": _check_perfectionist,
}


# ---------------------------------------------------------------------------
# Main check function
# ---------------------------------------------------------------------------
def evaluate_badges(
    trigger: BadgeTrigger,
    ctx: BadgeContext,
    already_earned: Iterable[str],
) -> list[str]:
    """Badge ids newly earned for *trigger*, in definition order."""
    earned = set(already_earned)
    categories = categories_for(trigger)
    newly_earned: list[str] = []

    for badge in BADGE_DEFINITIONS:
        if badge.category not in categories or badge.id in earned:
            continue
        if BADGE_CHECKS[badge.id](ctx):
            newly_earned.append(badge.id)
            logger.debug("Badge condition met: %s", badge.id)

    return newly_earned
