"""
obe_core.services.badge_service — Badge Awards
===============================================

``check_badges`` is called after an activity that might unlock a badge
(an XP grant, a submission, a streak update, a released grade, a journal
entry).  Only the badge categories relevant to the trigger are read from
storage; the conditions themselves live in :mod:`obe_core.engine.badges`.

Pipeline:
  1. Validate input
  2. Read the badges the student already holds (fatal on failure)
  3. Build the activity snapshot for the trigger's categories
  4. Insert each newly earned badge under its own SAVEPOINT; a unique
     violation means a concurrent check got there first and is skipped
  5. Grant each inserted badge's XP through ``award_xp`` (source ``badge``);
     a failed grant is logged and the badge stays awarded
  6. Hand the peer announcement for rare badges to the dispatcher
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from obe_core.database.models import (
    Assignment,
    AttainmentScope,
    BadgeCategory,
    BadgeTrigger,
    CourseEnrollment,
    GamificationState,
    Grade,
    HabitLog,
    JournalEntry,
    LearningOutcome,
    OutcomeAttainment,
    OutcomeTier,
    StudentBadge,
    Submission,
    XPSource,
)
from obe_core.engine.badges import (
    BADGES_BY_ID,
    PERFECT_WEEK_DAYS,
    RARE_BADGES,
    BadgeContext,
    categories_for,
    evaluate_badges,
    hours_between,
)
from obe_core.errors import ObeError, StorageError, ValidationError
from obe_core.services.dispatch import TaskDispatcher, get_dispatcher
from obe_core.services.notification_service import notify_peers_of_rare_badges
from obe_core.services.xp_service import award_xp, validate_student_id

logger = logging.getLogger(__name__)

PERFECT_SCORE_PERCENT = 100.0


@dataclass
class BadgeCheckResult:
    new_badges: list[str] = field(default_factory=list)
    total_badges: int = 0

    def to_dict(self) -> dict:
        return {
            "success": True,
            "new_badges": self.new_badges,
            "total_badges": self.total_badges,
        }


def validate_trigger(trigger: object) -> BadgeTrigger:
    try:
        return BadgeTrigger(trigger)
    except ValueError:
        valid = ", ".join(t.value for t in BadgeTrigger)
        raise ValidationError(
            f"trigger is required and must be one of: {valid}"
        ) from None


# ---------------------------------------------------------------------------
# Activity snapshot
# ---------------------------------------------------------------------------
def _perfect_assignment_count(session: Session, student_id: str) -> int:
    count = session.scalar(
        select(func.count(func.distinct(Submission.assignment_id)))
        .join(Grade, Grade.submission_id == Submission.id)
        .where(
            Submission.student_id == student_id,
            Grade.score_percent >= PERFECT_SCORE_PERCENT,
        )
    )
    return int(count or 0)


def _course_clo_attainment(
    session: Session, student_id: str
) -> dict[str, dict[str, float | None]]:
    """Per enrolled course, the student's attainment on each of its CLOs."""
    courses = session.scalars(
        select(CourseEnrollment.course_id).where(CourseEnrollment.student_id == student_id)
    ).all()
    result: dict[str, dict[str, float | None]] = {}
    for course_id in courses:
        clo_ids = session.scalars(
            select(LearningOutcome.id).where(
                LearningOutcome.course_id == course_id,
                LearningOutcome.tier == OutcomeTier.CLO.value,
            )
        ).all()
        rows = session.execute(
            select(OutcomeAttainment.outcome_id, OutcomeAttainment.attainment_percent).where(
                OutcomeAttainment.student_id == student_id,
                OutcomeAttainment.course_id == course_id,
                OutcomeAttainment.scope == AttainmentScope.STUDENT_COURSE.value,
            )
        ).all()
        held = {outcome_id: pct for outcome_id, pct in rows}
        result[course_id] = {clo_id: held.get(clo_id) for clo_id in clo_ids}
    return result


def _build_context(
    session: Session,
    student_id: str,
    categories: set[BadgeCategory],
    now: datetime,
) -> BadgeContext:
    values: dict = {"today": now.date()}

    if BadgeCategory.STREAK in categories:
        state = session.get(GamificationState, student_id)
        values["streak_count"] = (state.streak_count or 0) if state else 0

    if categories & {BadgeCategory.ACADEMIC, BadgeCategory.MYSTERY}:
        values["perfect_assignment_count"] = _perfect_assignment_count(session, student_id)

    if BadgeCategory.ACADEMIC in categories:
        values["submission_count"] = int(session.scalar(
            select(func.count(Submission.id)).where(Submission.student_id == student_id)
        ) or 0)
        values["course_clo_attainment"] = _course_clo_attainment(session, student_id)

    if BadgeCategory.ENGAGEMENT in categories:
        values["journal_entry_count"] = int(session.scalar(
            select(func.count(JournalEntry.id)).where(JournalEntry.student_id == student_id)
        ) or 0)
        since = now.date() - timedelta(days=PERFECT_WEEK_DAYS - 1)
        habits: dict = {}
        for log_date, habit_type in session.execute(
            select(HabitLog.log_date, HabitLog.habit_type).where(
                HabitLog.student_id == student_id,
                HabitLog.log_date >= since,
                HabitLog.completed_at.is_not(None),
            )
        ):
            habits.setdefault(log_date, set()).add(habit_type)
        values["habits_by_date"] = {d: frozenset(h) for d, h in habits.items()}

    if BadgeCategory.MYSTERY in categories:
        rows = session.execute(
            select(Submission.submitted_at, Assignment.created_at)
            .join(Assignment, Assignment.id == Submission.assignment_id)
            .where(Submission.student_id == student_id)
        ).all()
        values["submission_times"] = tuple(submitted for submitted, _ in rows)
        values["submission_delays_hours"] = tuple(
            hours_between(published, submitted)
            for submitted, published in rows
            if published is not None
        )

    return BadgeContext(**values)


# ---------------------------------------------------------------------------
# Check & award
# ---------------------------------------------------------------------------
def check_badges(
    engine: Engine,
    student_id: str,
    trigger: BadgeTrigger | str,
    *,
    now: datetime | None = None,
    dispatcher: TaskDispatcher | None = None,
    announce_to_peers: bool = True,
) -> BadgeCheckResult:
    """Award every badge the student has newly earned.

    Raises
    ------
    ValidationError
        Bad ``student_id`` or unknown ``trigger``.
    StorageError
        Existing badges or the activity snapshot could not be read, or the
        new badges could not be saved.
    """
    validate_student_id(student_id)
    trigger = validate_trigger(trigger)
    now = now or datetime.now(UTC)

    try:
        with Session(engine) as session:
            existing = set(session.scalars(
                select(StudentBadge.badge_id).where(StudentBadge.student_id == student_id)
            ).all())
    except SQLAlchemyError as exc:
        logger.exception("Badge read failed for %s", student_id)
        raise StorageError("Failed to fetch existing badges", detail=str(exc)) from exc

    try:
        with Session(engine) as session:
            ctx = _build_context(session, student_id, categories_for(trigger), now)
    except SQLAlchemyError as exc:
        logger.exception("Badge activity read failed for %s", student_id)
        raise StorageError("Failed to read badge activity", detail=str(exc)) from exc

    earned = evaluate_badges(trigger, ctx, existing)
    awarded = _insert_badges(engine, student_id, earned, now)

    for badge_id in awarded:
        badge = BADGES_BY_ID[badge_id]
        logger.info("Student %s earned badge %s", student_id, badge_id)
        try:
            award_xp(
                engine,
                student_id,
                badge.xp_reward,
                XPSource.BADGE,
                reference_id=badge_id,
                note=f"Badge earned: {badge_id}",
                now=now,
            )
        except ObeError:
            logger.exception("Badge XP grant failed for %s / %s", student_id, badge_id)

    rare = [(b, BADGES_BY_ID[b].name) for b in awarded if b in RARE_BADGES]
    if announce_to_peers and rare:
        (dispatcher or get_dispatcher()).submit(
            f"peer-badge:{student_id}",
            notify_peers_of_rare_badges,
            engine,
            student_id,
            rare,
        )

    return BadgeCheckResult(new_badges=awarded, total_badges=len(existing) + len(awarded))


def _insert_badges(
    engine: Engine, student_id: str, badge_ids: list[str], now: datetime
) -> list[str]:
    awarded: list[str] = []
    if not badge_ids:
        return awarded
    try:
        with Session(engine) as session:
            for badge_id in badge_ids:
                try:
                    with session.begin_nested():   # SAVEPOINT
                        session.add(StudentBadge(
                            student_id=student_id, badge_id=badge_id, awarded_at=now,
                        ))
                        session.flush()
                    awarded.append(badge_id)
                except IntegrityError:
                    logger.debug("Badge %s already held by %s", badge_id, student_id)
            session.commit()
    except SQLAlchemyError as exc:
        logger.exception("Badge insert failed for %s", student_id)
        raise StorageError("Failed to record badges", detail=str(exc)) from exc
    return awarded


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------
def get_student_badges(engine: Engine, student_id: str) -> list[dict]:
    """Badges held by a student, oldest first."""
    validate_student_id(student_id)
    try:
        with Session(engine) as session:
            rows = session.scalars(
                select(StudentBadge)
                .where(StudentBadge.student_id == student_id)
                .order_by(StudentBadge.awarded_at, StudentBadge.badge_id)
            ).all()
            result = []
            for row in rows:
                badge = BADGES_BY_ID.get(row.badge_id)
                result.append({
                    "badge_id": row.badge_id,
                    "name": badge.name if badge else row.badge_id,
                    "category": badge.category.value if badge else None,
                    "awarded_at": row.awarded_at.isoformat() if row.awarded_at else None,
                })
    except SQLAlchemyError as exc:
        logger.exception("Badge read failed for %s", student_id)
        raise StorageError("Failed to fetch existing badges", detail=str(exc)) from exc
    return result
