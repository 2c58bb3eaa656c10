"""
obe_core.services.streak_service — Daily Login Streak
======================================================

Called once per authenticated visit.  The streak row is updated in a single
write; everything that follows a milestone (the XP grant and the peer
announcement) is handed to the background dispatcher and never affects the
response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from obe_core.database.models import GamificationState, XPSource
from obe_core.engine.leveling import level_progress
from obe_core.engine.streak import (
    MILESTONE_XP,
    PEER_ANNOUNCED_MILESTONES,
    StreakState,
    calculate_streak_update,
    milestone_progress,
    next_milestone,
)
from obe_core.errors import StorageError
from obe_core.services.dispatch import TaskDispatcher, get_dispatcher
from obe_core.services.notification_service import notify_peers_of_milestone
from obe_core.services.xp_service import award_xp, validate_student_id

logger = logging.getLogger(__name__)


@dataclass
class StreakOutcome:
    streak_count: int
    milestone_reached: int | None = None
    streak_frozen: bool = False

    def to_dict(self) -> dict:
        return {
            "success": True,
            "streak_count": self.streak_count,
            "milestone_reached": self.milestone_reached,
            "streak_frozen": self.streak_frozen,
        }


def _read_state(engine: Engine, student_id: str) -> StreakState | None:
    try:
        with Session(engine) as session:
            row = session.get(GamificationState, student_id)
            if row is None:
                return None
            return StreakState(
                streak_count=row.streak_count or 0,
                last_login_date=row.last_login_date,
                streak_freezes_available=row.streak_freezes_available or 0,
            )
    except SQLAlchemyError as exc:
        logger.exception("Streak state read failed for %s", student_id)
        raise StorageError("Failed to read streak state", detail=str(exc)) from exc


def process_streak(
    engine: Engine,
    student_id: str,
    *,
    today: date | None = None,
    dispatcher: TaskDispatcher | None = None,
    announce_to_peers: bool = True,
) -> StreakOutcome:
    """Advance, hold, freeze or reset the student's daily streak.

    *today* defaults to the current UTC calendar date.  A second call on the
    same day returns the stored count and writes nothing.

    Raises
    ------
    ValidationError
        Empty or non-string ``student_id``.
    StorageError
        The state read or the streak write failed.
    """
    validate_student_id(student_id)
    today = today or datetime.now(UTC).date()

    state = _read_state(engine, student_id)
    update = calculate_streak_update(state, today)

    if not update.is_new_day:
        return StreakOutcome(streak_count=update.new_streak_count)

    try:
        with Session(engine) as session:
            row = session.get(GamificationState, student_id)
            if row is None:
                row = GamificationState(
                    student_id=student_id,
                    xp_total=0,
                    level=1,
                    streak_freezes_available=0,
                )
                session.add(row)
            row.streak_count = update.new_streak_count
            row.last_login_date = today
            if update.freeze_consumed:
                row.streak_freezes_available = max((row.streak_freezes_available or 0) - 1, 0)
            session.commit()
    except SQLAlchemyError as exc:
        logger.exception("Streak update failed for %s", student_id)
        raise StorageError("Failed to update streak", detail=str(exc)) from exc

    if update.freeze_consumed:
        logger.info("Streak freeze consumed for %s (streak %d)", student_id, update.new_streak_count)
    elif update.is_reset:
        logger.debug("Streak reset for %s", student_id)

    milestone = update.milestone_reached
    if milestone is not None:
        _dispatch_milestone_effects(
            engine,
            student_id,
            milestone,
            dispatcher or get_dispatcher(),
            announce_to_peers=announce_to_peers,
        )

    return StreakOutcome(
        streak_count=update.new_streak_count,
        milestone_reached=milestone,
        streak_frozen=update.streak_frozen,
    )


def _dispatch_milestone_effects(
    engine: Engine,
    student_id: str,
    milestone: int,
    dispatcher: TaskDispatcher,
    *,
    announce_to_peers: bool,
) -> None:
    logger.info("Student %s reached a %d-day streak", student_id, milestone)
    dispatcher.submit(
        f"streak-milestone-xp:{student_id}:{milestone}",
        award_xp,
        engine,
        student_id,
        MILESTONE_XP[milestone],
        XPSource.STREAK_MILESTONE,
        note=f"Streak milestone: {milestone} days",
    )
    if announce_to_peers and milestone in PEER_ANNOUNCED_MILESTONES:
        dispatcher.submit(
            f"peer-milestone:{student_id}:{milestone}",
            notify_peers_of_milestone,
            engine,
            student_id,
            milestone,
        )


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------
def get_gamification_summary(engine: Engine, student_id: str) -> dict:
    """Level progress plus streak status for one student.

    A student with no ``student_gamification`` row reads as level 1 with no
    streak.
    """
    validate_student_id(student_id)
    try:
        with Session(engine) as session:
            row = session.get(GamificationState, student_id)
            xp_total = row.xp_total if row else 0
            streak_count = row.streak_count if row else 0
            last_login = row.last_login_date if row else None
            freezes = row.streak_freezes_available if row else 0
    except SQLAlchemyError as exc:
        logger.exception("Gamification summary read failed for %s", student_id)
        raise StorageError("Failed to read gamification state", detail=str(exc)) from exc

    return {
        "student_id": student_id,
        **level_progress(xp_total or 0).to_dict(),
        "streak": {
            "count": streak_count or 0,
            "last_login_date": last_login.isoformat() if last_login else None,
            "freezes_available": freezes or 0,
            "next_milestone": next_milestone(streak_count or 0),
            "milestone_progress": milestone_progress(streak_count or 0),
        },
    }
