"""
tests/test_badge_service.py — Badge Award Tests
================================================

``check_badges`` against SQLite, with side effects run inline.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from conftest import NOW, seed_attainment, seed_classmates, seed_graded_submission, seed_outcome
from obe_core.database.models import (
    GamificationState,
    HabitLog,
    JournalEntry,
    Notification,
    OutcomeTier,
    StudentBadge,
    XPSource,
    XPTransaction,
)
from obe_core.errors import StorageError, ValidationError
from obe_core.services import badge_service
from obe_core.services.badge_service import check_badges, get_student_badges

PUBLISHED = NOW - timedelta(days=2)


def _seed_state(engine, student_id="stu-1", *, streak=0, opt_out=False):
    with Session(engine) as session:
        session.add(GamificationState(
            student_id=student_id,
            xp_total=0,
            level=1,
            streak_count=streak,
            leaderboard_opt_out=opt_out,
        ))
        session.commit()


def _seed_badge(engine, badge_id, student_id="stu-1"):
    with Session(engine) as session:
        session.add(StudentBadge(student_id=student_id, badge_id=badge_id, awarded_at=NOW))
        session.commit()


def _submit(engine, suffix, *, score=90.0, published_at=PUBLISHED, submitted_at=NOW):
    return seed_graded_submission(
        engine,
        suffix=suffix,
        score_percent=score,
        published_at=published_at,
        submitted_at=submitted_at,
    )


def _badges(engine, student_id="stu-1") -> list[str]:
    with Session(engine) as session:
        return sorted(session.scalars(
            select(StudentBadge.badge_id).where(StudentBadge.student_id == student_id)
        ).all())


def _badge_xp(engine, student_id="stu-1") -> list[XPTransaction]:
    with Session(engine) as session:
        return list(session.scalars(
            select(XPTransaction).where(
                XPTransaction.student_id == student_id,
                XPTransaction.source == XPSource.BADGE.value,
            ).order_by(XPTransaction.reference_id)
        ).all())


def _inbox(engine, user_id) -> list[Notification]:
    with Session(engine) as session:
        return list(session.scalars(
            select(Notification).where(Notification.user_id == user_id)
        ).all())


# ===========================================================================
# Validation
# ===========================================================================
class TestValidation:
    @pytest.mark.parametrize("student_id", ["", "   ", None, 42, "s" * 37])
    def test_bad_student_id(self, db_engine, dispatcher, student_id):
        with pytest.raises(ValidationError):
            check_badges(db_engine, student_id, "xp_award", now=NOW, dispatcher=dispatcher)

    def test_unknown_trigger(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=30)
        with pytest.raises(ValidationError, match="trigger is required and must be one of"):
            check_badges(db_engine, "stu-1", "login", now=NOW, dispatcher=dispatcher)
        assert _badges(db_engine) == []


# ===========================================================================
# Streak badges
# ===========================================================================
class TestStreakBadges:
    def test_awards_badge_and_xp(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=7)

        result = check_badges(db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher)

        assert result.to_dict() == {"success": True, "new_badges": ["streak_7"], "total_badges": 1}
        (row,) = _badge_xp(db_engine)
        assert row.xp_amount == 50
        assert row.reference_id == "streak_7"
        assert row.note == "Badge earned: streak_7"
        with Session(db_engine) as session:
            assert session.get(GamificationState, "stu-1").xp_total == 50

    def test_second_check_awards_nothing(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=7)
        check_badges(db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher)

        result = check_badges(db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher)

        assert result.new_badges == []
        assert result.total_badges == 1
        assert len(_badge_xp(db_engine)) == 1

    def test_total_includes_existing(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=14)
        _seed_badge(db_engine, "streak_7")

        result = check_badges(db_engine, "stu-1", "xp_award", now=NOW, dispatcher=dispatcher)

        assert result.new_badges == ["streak_14"]
        assert result.total_badges == 2

    def test_not_checked_on_grade_trigger(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=100)
        result = check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == []

    def test_rare_streak_announced(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada"), ("stu-2", "Grace"))
        _seed_state(db_engine, streak=30)

        result = check_badges(db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher)

        assert result.new_badges == ["streak_7", "streak_14", "streak_30"]
        assert dispatcher.completed == ["peer-badge:stu-1"]
        (note,) = _inbox(db_engine, "stu-2")
        assert note.body == "Ada just earned the 30-Day Legend badge!"


# ===========================================================================
# Academic badges
# ===========================================================================
class TestAcademicBadges:
    def test_first_submission(self, db_engine, dispatcher):
        _submit(db_engine, "1")
        result = check_badges(db_engine, "stu-1", "submission", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["first_submission"]
        assert dispatcher.completed == []

    def test_perfect_score(self, db_engine, dispatcher):
        _submit(db_engine, "1", score=100.0)
        result = check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["first_submission", "perfect_score"]

    def test_perfectionist_needs_five_assignments(self, db_engine, dispatcher):
        for i in range(4):
            _submit(db_engine, str(i), score=100.0)
        assert "perfectionist" not in check_badges(
            db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher
        ).new_badges

        _submit(db_engine, "4", score=100.0)
        result = check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["perfectionist"]
        assert result.total_badges == 3

    def test_all_clos_met(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada"))
        seed_outcome(db_engine, "clo-1", OutcomeTier.CLO, course_id="course-1")
        seed_outcome(db_engine, "clo-2", OutcomeTier.CLO, course_id="course-1")
        seed_attainment(db_engine, "clo-1", 80.0)
        seed_attainment(db_engine, "clo-2", 70.0)

        result = check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["all_clos_met"]

    def test_all_clos_met_needs_every_clo(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada"))
        seed_outcome(db_engine, "clo-1", OutcomeTier.CLO, course_id="course-1")
        seed_outcome(db_engine, "clo-2", OutcomeTier.CLO, course_id="course-1")
        seed_attainment(db_engine, "clo-1", 95.0)

        result = check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == []


# ===========================================================================
# Engagement badges
# ===========================================================================
class TestEngagementBadges:
    def _habits(self, engine, days, *, completed=True):
        with Session(engine) as session:
            for offset in range(days):
                for habit in ("study", "sleep", "exercise", "hydrate"):
                    session.add(HabitLog(
                        student_id="stu-1",
                        log_date=NOW.date() - timedelta(days=offset),
                        habit_type=habit,
                        completed_at=NOW if completed else None,
                    ))
            session.commit()

    def test_journal_10(self, db_engine, dispatcher):
        with Session(db_engine) as session:
            session.add_all(JournalEntry(student_id="stu-1", body=f"Entry {i}") for i in range(10))
            session.commit()

        result = check_badges(db_engine, "stu-1", "journal", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["journal_10"]

    def test_perfect_week(self, db_engine, dispatcher):
        self._habits(db_engine, 7)
        result = check_badges(db_engine, "stu-1", "journal", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["perfect_week"]

    def test_six_days_is_not_a_week(self, db_engine, dispatcher):
        self._habits(db_engine, 6)
        result = check_badges(db_engine, "stu-1", "journal", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == []

    def test_uncompleted_habits_ignored(self, db_engine, dispatcher):
        self._habits(db_engine, 7, completed=False)
        result = check_badges(db_engine, "stu-1", "journal", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == []


# ===========================================================================
# Mystery badges
# ===========================================================================
class TestMysteryBadges:
    def test_speed_demon_announced(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada Lovelace"), ("stu-2", "Grace"))
        _submit(db_engine, "1", published_at=NOW - timedelta(minutes=30))

        result = check_badges(db_engine, "stu-1", "submission", now=NOW, dispatcher=dispatcher)

        assert result.new_badges == ["first_submission", "speed_demon"]
        assert dispatcher.completed == ["peer-badge:stu-1"]
        (note,) = _inbox(db_engine, "stu-2")
        assert note.title == "Badge Achievement"
        assert note.body == "Ada Lovelace just earned the Speed Demon badge!"
        assert note.metadata_ == {
            "milestone_type": "rare_badge",
            "triggering_student_id": "stu-1",
            "badge_id": "speed_demon",
        }
        assert sorted(r.reference_id for r in _badge_xp(db_engine)) == [
            "first_submission", "speed_demon",
        ]

    def test_night_owl_on_any_trigger(self, db_engine, dispatcher):
        for day in range(3):
            submitted = NOW.replace(hour=2) - timedelta(days=day)
            _submit(db_engine, str(day), published_at=submitted - timedelta(days=2),
                    submitted_at=submitted)

        result = check_badges(db_engine, "stu-1", "journal", now=NOW, dispatcher=dispatcher)
        assert result.new_badges == ["night_owl"]

    def test_anonymous_student_not_announced(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada"), ("stu-2", "Grace"))
        _seed_state(db_engine, opt_out=True)
        _submit(db_engine, "1", published_at=NOW - timedelta(minutes=5))

        result = check_badges(db_engine, "stu-1", "submission", now=NOW, dispatcher=dispatcher)

        assert "speed_demon" in result.new_badges
        assert _inbox(db_engine, "stu-2") == []

    def test_announcement_disabled(self, db_engine, dispatcher):
        seed_classmates(db_engine, "course-1", ("stu-1", "Ada"), ("stu-2", "Grace"))
        _submit(db_engine, "1", published_at=NOW - timedelta(minutes=5))

        check_badges(
            db_engine, "stu-1", "submission",
            now=NOW, dispatcher=dispatcher, announce_to_peers=False,
        )

        assert dispatcher.completed == []
        assert _inbox(db_engine, "stu-2") == []


# ===========================================================================
# Failure handling
# ===========================================================================
class TestFailures:
    def test_xp_failure_keeps_badge(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=7)
        with patch.object(badge_service, "award_xp", side_effect=StorageError("boom")):
            result = check_badges(
                db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher
            )

        assert result.new_badges == ["streak_7"]
        assert _badges(db_engine) == ["streak_7"]
        assert _badge_xp(db_engine) == []

    def test_concurrent_insert_skipped(self, db_engine, dispatcher):
        _seed_badge(db_engine, "streak_7")
        with patch.object(badge_service, "evaluate_badges", return_value=["streak_7"]):
            result = check_badges(
                db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher
            )

        assert result.new_badges == []
        assert result.total_badges == 1
        assert _badge_xp(db_engine) == []

    def test_activity_read_failure(self, db_engine, dispatcher):
        with patch.object(badge_service, "_build_context", side_effect=SQLAlchemyError("down")):
            with pytest.raises(StorageError, match="Failed to read badge activity"):
                check_badges(db_engine, "stu-1", "grade", now=NOW, dispatcher=dispatcher)


# ===========================================================================
# Read model
# ===========================================================================
class TestGetStudentBadges:
    def test_lists_badges_with_names(self, db_engine, dispatcher):
        _seed_state(db_engine, streak=14)
        check_badges(db_engine, "stu-1", "streak_update", now=NOW, dispatcher=dispatcher)

        badges = get_student_badges(db_engine, "stu-1")

        assert [(b["badge_id"], b["name"], b["category"]) for b in badges] == [
            ("streak_14", "Fortnight Fighter", "streak"),
            ("streak_7", "7-Day Warrior", "streak"),
        ]

    def test_no_badges(self, db_engine):
        assert get_student_badges(db_engine, "stu-1") == []
