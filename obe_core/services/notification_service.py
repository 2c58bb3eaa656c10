"""
obe_core.services.notification_service — Notification Sink
============================================================

Writes rows to the ``notifications`` inbox.  Every public function here is
a best-effort side effect: callers submit them through
:mod:`obe_core.services.dispatch` and never depend on their success.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from obe_core.database.engine import get_session
from obe_core.database.models import (
    CourseEnrollment,
    GamificationState,
    Notification,
    NotificationType,
    Profile,
)

logger = logging.getLogger(__name__)


def create_notification(
    session: Session,
    *,
    user_id: str,
    type: NotificationType,
    title: str,
    body: str,
    metadata: dict | None = None,
) -> Notification:
    """Add a notification to *session* (caller commits)."""
    notification = Notification(
        user_id=user_id,
        type=type.value,
        title=title,
        body=body,
        metadata_=metadata,
        read=False,
    )
    session.add(notification)
    return notification


# ---------------------------------------------------------------------------
# Grade released
# ---------------------------------------------------------------------------
def notify_grade_released(
    engine: Engine,
    *,
    student_id: str,
    assignment_id: str,
    grade_id: str,
    score_percent: float,
) -> None:
    """Tell a student their assignment has been graded."""
    with get_session(engine) as session:
        create_notification(
            session,
            user_id=student_id,
            type=NotificationType.GRADE_RELEASED,
            title="Grade Released",
            body="Your assignment has been graded",
            metadata={
                "assignment_id": assignment_id,
                "score_percent": score_percent,
                "grade_id": grade_id,
            },
        )
    logger.debug("grade_released notification queued for %s", student_id)


# ---------------------------------------------------------------------------
# Peer milestone fan-out
# ---------------------------------------------------------------------------
def find_course_peers(session: Session, student_id: str) -> list[str]:
    """Every other student sharing at least one course with *student_id*."""
    my_courses = select(CourseEnrollment.course_id).where(
        CourseEnrollment.student_id == student_id
    )
    rows = session.scalars(
        select(CourseEnrollment.student_id)
        .where(
            CourseEnrollment.course_id.in_(my_courses),
            CourseEnrollment.student_id != student_id,
        )
        .distinct()
        .order_by(CourseEnrollment.student_id)
    ).all()
    return list(rows)


def _announce_to_peers(
    session: Session,
    student_id: str,
    build: Callable[[str], list[tuple[str, str, dict]]],
) -> int:
    """Write ``build(display_name)`` notices to every course peer.

    Returns the number of peers reached, or 0 for an anonymous student.
    """
    state = session.get(GamificationState, student_id)
    if state is not None and state.leaderboard_opt_out:
        logger.debug("Skipping peer fan-out for anonymous student %s", student_id)
        return 0

    profile = session.get(Profile, student_id)
    name = profile.full_name if profile else "A classmate"
    notices = build(name)

    peers = find_course_peers(session, student_id)
    for peer_id in peers:
        for title, body, metadata in notices:
            create_notification(
                session,
                user_id=peer_id,
                type=NotificationType.PEER_MILESTONE,
                title=title,
                body=body,
                metadata=metadata,
            )
    return len(peers)


def notify_peers_of_milestone(engine: Engine, student_id: str, milestone: int) -> int:
    """Celebrate a streak milestone to the achiever's classmates.

    Students in anonymous-leaderboard mode are never announced.
    Returns the number of notifications written.
    """
    with get_session(engine) as session:
        reached = _announce_to_peers(session, student_id, lambda name: [(
            "Streak milestone!",
            f"{name} just reached a {milestone}-day streak",
            {"student_id": student_id, "milestone": milestone},
        )])

    if reached:
        logger.info(
            "Streak milestone %d for %s announced to %d peers",
            milestone, student_id, reached,
        )
    return reached


def notify_peers_of_rare_badges(
    engine: Engine, student_id: str, badges: list[tuple[str, str]]
) -> int:
    """Announce rare badges, given as ``(badge_id, badge_name)`` pairs.

    One notification per badge per peer; anonymous students are skipped.
    Returns the number of peers reached.
    """
    if not badges:
        return 0
    with get_session(engine) as session:
        reached = _announce_to_peers(session, student_id, lambda name: [
            (
                "Badge Achievement",
                f"{name} just earned the {badge_name} badge!",
                {
                    "milestone_type": "rare_badge",
                    "triggering_student_id": student_id,
                    "badge_id": badge_id,
                },
            )
            for badge_id, badge_name in badges
        ])

    if reached:
        logger.info(
            "Rare badges %s for %s announced to %d peers",
            [b for b, _ in badges], student_id, reached,
        )
    return reached
