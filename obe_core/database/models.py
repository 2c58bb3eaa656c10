"""
obe_core.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- xp_transactions      — Append-only XP ledger (source of truth for XP)
- bonus_xp_events      — Time-boxed XP multipliers
- student_gamification — Per-student cached XP total, level and streak state
- profiles             — Display names used in peer notifications
- course_enrollments   — Student ↔ course membership (peer fan-out)
- learning_outcomes    — CLO / PLO / ILO nodes
- outcome_mappings     — Weighted CLO→PLO and PLO→ILO edges
- assignments          — Assignment with its CLO weights
- submissions          — A student's submission to an assignment
- grades               — Finalized grade for a submission
- evidence             — Immutable per-(grade, CLO) score record
- outcome_attainment   — Per-student attainment cache at each tier
- notifications        — User-facing notification inbox
- student_badges       — Badges a student has earned (unique per badge)
- journal_entries      — Reflection journal entries
- habit_logs           — Daily habit completions

Append-only tables (``xp_transactions``, ``evidence``) are never updated.
``student_gamification`` and ``outcome_attainment`` are caches derived from
them and can be rebuilt at any time.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Width of every id column; a UUID fits exactly.
ID_LENGTH = 36


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all obe-core ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class XPSource(enum.StrEnum):
    """Every reason an XP ledger row can be written for."""
    LOGIN = "login"
    SUBMISSION = "submission"
    BADGE = "badge"
    BADGE_EARNED = "badge_earned"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    PERFECT_DAY = "perfect_day"
    FIRST_ATTEMPT_BONUS = "first_attempt_bonus"
    PERFECT_RUBRIC = "perfect_rubric"
    BONUS_EVENT = "bonus_event"
    DISCUSSION_QUESTION = "discussion_question"
    DISCUSSION_ANSWER = "discussion_answer"
    SURVEY_COMPLETION = "survey_completion"
    QUIZ_COMPLETION = "quiz_completion"
    STREAK_MILESTONE = "streak_milestone"
    JOURNAL = "journal"
    GRADE = "grade"
    LEVEL_UP = "level_up"
    STREAK_FREEZE_PURCHASE = "streak_freeze_purchase"


class OutcomeTier(enum.StrEnum):
    """Tier of a learning outcome.  Fixed at creation."""
    CLO = "CLO"
    PLO = "PLO"
    ILO = "ILO"


class AttainmentScope(enum.StrEnum):
    """Attainment cache scope — one per outcome tier."""
    STUDENT_COURSE = "student_course"   # CLO
    COURSE = "course"                   # PLO
    PROGRAM = "program"                 # ILO


class AttainmentLevel(enum.StrEnum):
    """Band an evidence score is classified into."""
    EXCELLENT = "Excellent"
    SATISFACTORY = "Satisfactory"
    DEVELOPING = "Developing"
    NOT_YET = "Not_Yet"


class NotificationType(enum.StrEnum):
    GRADE_RELEASED = "grade_released"
    PEER_MILESTONE = "peer_milestone"


class BadgeTrigger(enum.StrEnum):
    """Event that asks for a badge check."""
    XP_AWARD = "xp_award"
    SUBMISSION = "submission"
    STREAK_UPDATE = "streak_update"
    GRADE = "grade"
    JOURNAL = "journal"


class BadgeCategory(enum.StrEnum):
    STREAK = "streak"
    ACADEMIC = "academic"
    ENGAGEMENT = "engagement"
    MYSTERY = "mystery"   # conditions never shown to students


# ---------------------------------------------------------------------------
# XPTransaction — append-only ledger
# ---------------------------------------------------------------------------
class XPTransaction(Base):
    __tablename__ = "xp_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source: Mapped[str] = mapped_column(String(40), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_xp_transactions_student_time", "student_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<XPTransaction id={self.id} student={self.student_id} "
            f"amount={self.xp_amount} source={self.source}>"
        )


# ---------------------------------------------------------------------------
# BonusXPEvent — time-boxed multiplier
# ---------------------------------------------------------------------------
class BonusXPEvent(Base):
    """A promotional window during which XP grants are multiplied.

    Several may overlap; the highest active multiplier wins.
    """
    __tablename__ = "bonus_xp_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=2.0)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_bonus_xp_events_window", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<BonusXPEvent id={self.id} title={self.title!r} x{self.multiplier}>"


# ---------------------------------------------------------------------------
# GamificationState — one mutable row per student
# ---------------------------------------------------------------------------
class GamificationState(Base):
    __tablename__ = "student_gamification"

    student_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    xp_total: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    streak_count: Mapped[int] = mapped_column(Integer, default=0)
    last_login_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    streak_freezes_available: Mapped[int] = mapped_column(Integer, default=0)
    leaderboard_opt_out: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_student_gamification_xp_desc", "xp_total"),
    )

    def __repr__(self) -> str:
        return (
            f"<GamificationState student={self.student_id} xp={self.xp_total} "
            f"lvl={self.level} streak={self.streak_count}>"
        )


# ---------------------------------------------------------------------------
# Profile & CourseEnrollment — peer lookup for milestone fan-out
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<Profile id={self.id} name={self.full_name!r}>"


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    student_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    course_id: Mapped[str] = mapped_column(String(36), primary_key=True)

    __table_args__ = (
        Index("ix_course_enrollments_course", "course_id"),
    )

    def __repr__(self) -> str:
        return f"<CourseEnrollment student={self.student_id} course={self.course_id}>"


# ---------------------------------------------------------------------------
# LearningOutcome & OutcomeMapping — the CLO → PLO → ILO forest
# ---------------------------------------------------------------------------
class LearningOutcome(Base):
    __tablename__ = "learning_outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    tier: Mapped[str] = mapped_column(String(3), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    course_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    program_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_learning_outcomes_tier", "tier"),
    )

    def __repr__(self) -> str:
        return f"<LearningOutcome id={self.id} tier={self.tier} title={self.title!r}>"


class OutcomeMapping(Base):
    """Directed, weighted edge between outcomes of adjacent tiers.

    Acyclicity is not enforced here; edges only ever go CLO→PLO or PLO→ILO.
    """
    __tablename__ = "outcome_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    source_outcome_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_outcomes.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_outcome_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("learning_outcomes.id", ondelete="CASCADE"),
        nullable=False,
    )
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    __table_args__ = (
        UniqueConstraint(
            "source_outcome_id", "target_outcome_id",
            name="uq_outcome_mappings_source_target",
        ),
        Index("ix_outcome_mappings_target", "target_outcome_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<OutcomeMapping {self.source_outcome_id} -> "
            f"{self.target_outcome_id} w={self.weight}>"
        )


# ---------------------------------------------------------------------------
# Assignment → Submission → Grade chain
# ---------------------------------------------------------------------------
class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # [{"clo_id": "...", "weight": 0.6}, ...]
    clo_weights: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    total_marks: Mapped[float] = mapped_column(Float, default=100.0)
    # Publication time; submissions within the first hour earn a badge
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    submissions: Mapped[list[Submission]] = relationship(back_populates="assignment")

    def __repr__(self) -> str:
        return f"<Assignment id={self.id} course={self.course_id}>"


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    assignment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    assignment: Mapped[Assignment] = relationship(back_populates="submissions")

    def __repr__(self) -> str:
        return f"<Submission id={self.id} student={self.student_id}>"


class Grade(Base):
    __tablename__ = "grades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    submission_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False
    )
    total_score: Mapped[float] = mapped_column(Float, default=0.0)
    score_percent: Mapped[float] = mapped_column(Float, nullable=False)
    graded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Grade id={self.id} submission={self.submission_id} pct={self.score_percent}>"


# ---------------------------------------------------------------------------
# Evidence — immutable, one per (grade, CLO)
# ---------------------------------------------------------------------------
class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    submission_id: Mapped[str] = mapped_column(String(36), nullable=False)
    grade_id: Mapped[str] = mapped_column(String(36), nullable=False)
    clo_id: Mapped[str] = mapped_column(String(36), nullable=False)
    score_percent: Mapped[float] = mapped_column(Float, nullable=False)
    attainment_level: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        # Re-running a rollup for the same grade must not add a second sample
        UniqueConstraint("grade_id", "clo_id", name="uq_evidence_grade_clo"),
        Index("ix_evidence_student_clo", "student_id", "clo_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Evidence id={self.id} student={self.student_id} "
            f"clo={self.clo_id} pct={self.score_percent}>"
        )


# ---------------------------------------------------------------------------
# OutcomeAttainment — per-student attainment cache
# ---------------------------------------------------------------------------
class OutcomeAttainment(Base):
    __tablename__ = "outcome_attainment"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    outcome_id: Mapped[str] = mapped_column(String(36), nullable=False)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    course_id: Mapped[str] = mapped_column(String(36), nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    attainment_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "outcome_id", "student_id", "course_id", "scope",
            name="uq_outcome_attainment_key",
        ),
        Index("ix_outcome_attainment_student", "student_id", "scope"),
    )

    def __repr__(self) -> str:
        return (
            f"<OutcomeAttainment outcome={self.outcome_id} student={self.student_id} "
            f"scope={self.scope} pct={self.attainment_percent}>"
        )


# ---------------------------------------------------------------------------
# Notification — user-facing inbox
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_time", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# StudentBadge — one row per earned badge
# ---------------------------------------------------------------------------
class StudentBadge(Base):
    __tablename__ = "student_badges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    badge_id: Mapped[str] = mapped_column(String(40), nullable=False)
    awarded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("student_id", "badge_id", name="uq_student_badges_student_badge"),
    )

    def __repr__(self) -> str:
        return f"<StudentBadge student={self.student_id} badge={self.badge_id}>"


# ---------------------------------------------------------------------------
# JournalEntry & HabitLog — engagement activity read by badge checks
# ---------------------------------------------------------------------------
class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_journal_entries_student", "student_id"),
    )


class HabitLog(Base):
    """One daily habit for one student.  ``completed_at`` is null until done."""
    __tablename__ = "habit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False)
    log_date: Mapped[date] = mapped_column(Date, nullable=False)
    habit_type: Mapped[str] = mapped_column(String(40), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("student_id", "log_date", "habit_type", name="uq_habit_logs_day"),
    )
