"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the HTTP surface using the FastAPI TestClient, wired to
in-memory SQLite and the inline dispatcher.

These tests verify:
- Health endpoint availability
- Request validation renders as 400 ``{"error": ...}``
- Domain errors map to their status codes (404, 409)
- Basic response structure of every endpoint
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import NOW, seed_graded_submission, seed_mapping, seed_outcome
from obe_core.database.models import GamificationState, OutcomeTier, XPTransaction
from obe_core.services.xp_service import award_xp


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# POST /api/award-xp
# ===========================================================================
class TestAwardXPRoute:
    def test_award_returns_result(self, client):
        resp = client.post("/api/award-xp", json={
            "student_id": "stu-1", "xp_amount": 120, "source": "grade",
        })
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "xp_awarded": 120,
            "new_total": 120,
            "level_up": True,
            "new_level": 2,
        }

    def test_optional_fields_persisted(self, client, db_engine):
        client.post("/api/award-xp", json={
            "student_id": "stu-1",
            "xp_amount": 10,
            "source": "submission",
            "reference_id": "sub-1",
            "note": "On time",
        })
        with Session(db_engine) as session:
            row = session.scalars(select(XPTransaction)).one()
        assert row.reference_id == "sub-1"
        assert row.note == "On time"

    @pytest.mark.parametrize("payload", [
        {"xp_amount": 10, "source": "grade"},
        {"student_id": "", "xp_amount": 10, "source": "grade"},
        {"student_id": "stu-1", "xp_amount": "10", "source": "grade"},
        {"student_id": "stu-1", "xp_amount": 1.5, "source": "grade"},
        {"student_id": "stu-1", "source": "grade"},
    ])
    def test_malformed_body_is_400(self, client, payload):
        resp = client.post("/api/award-xp", json=payload)
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_overlong_student_id_is_400(self, client, db_engine):
        resp = client.post("/api/award-xp", json={
            "student_id": "s" * 37, "xp_amount": 10, "source": "grade",
        })
        assert resp.status_code == 400
        assert "at most 36" in resp.json()["error"]
        with Session(db_engine) as session:
            assert session.scalars(select(XPTransaction)).all() == []

    def test_unknown_source_is_400(self, client, db_engine):
        resp = client.post("/api/award-xp", json={
            "student_id": "stu-1", "xp_amount": 10, "source": "bribery",
        })
        assert resp.status_code == 400
        assert "source" in resp.json()["error"]
        with Session(db_engine) as session:
            assert session.scalars(select(XPTransaction)).all() == []


# ===========================================================================
# POST /api/process-streak
# ===========================================================================
class TestProcessStreakRoute:
    def test_first_visit(self, client):
        resp = client.post("/api/process-streak", json={"student_id": "stu-1"})
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "streak_count": 1,
            "milestone_reached": None,
            "streak_frozen": False,
        }

    def test_second_call_same_day_unchanged(self, client):
        client.post("/api/process-streak", json={"student_id": "stu-1"})
        resp = client.post("/api/process-streak", json={"student_id": "stu-1"})
        assert resp.json()["streak_count"] == 1

    def test_missing_student_is_400(self, client):
        resp = client.post("/api/process-streak", json={})
        assert resp.status_code == 400


# ===========================================================================
# Streak freezes and the gamification summary
# ===========================================================================
class TestStudentGamificationRoutes:
    def test_freeze_purchase_without_balance_is_409(self, client):
        resp = client.post("/api/students/stu-1/streak-freezes")
        assert resp.status_code == 409
        assert "error" in resp.json()

    def test_freeze_purchase(self, client, db_engine):
        award_xp(db_engine, "stu-1", 300, "grade", now=NOW, apply_bonus=False)
        resp = client.post("/api/students/stu-1/streak-freezes")
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "xp_spent": 200,
            "new_total": 100,
            "streak_freezes_available": 1,
        }

    def test_summary(self, client, db_engine):
        award_xp(db_engine, "stu-1", 150, "grade", now=NOW, apply_bonus=False)
        resp = client.get("/api/students/stu-1/gamification")
        assert resp.status_code == 200
        body = resp.json()
        assert body["xp_total"] == 150
        assert body["level"] == 2
        assert body["streak"]["count"] == 0


# ===========================================================================
# Attainment
# ===========================================================================
class TestRollupRoute:
    def test_unknown_grade_is_404(self, client):
        resp = client.post("/api/calculate-attainment-rollup", json={
            "grade_id": "nope", "submission_id": "nope",
        })
        assert resp.status_code == 404
        assert resp.json()["error"].startswith("Grade not found")

    def test_missing_ids_are_400(self, client):
        resp = client.post("/api/calculate-attainment-rollup", json={"grade_id": "g"})
        assert resp.status_code == 400

    def test_no_weights_reports_message(self, client, db_engine):
        grade_id, submission_id = seed_graded_submission(db_engine, clo_weights=[])
        resp = client.post("/api/calculate-attainment-rollup", json={
            "grade_id": grade_id, "submission_id": submission_id,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["evidence_count"] == 0
        assert body["message"] == "No CLO weights on assignment; nothing to roll up"

    def test_full_cascade_and_read_back(self, client, db_engine, dispatcher):
        seed_outcome(db_engine, "clo-1", OutcomeTier.CLO)
        seed_outcome(db_engine, "plo-1", OutcomeTier.PLO)
        seed_outcome(db_engine, "ilo-1", OutcomeTier.ILO)
        seed_mapping(db_engine, "clo-1", "plo-1")
        seed_mapping(db_engine, "plo-1", "ilo-1")
        grade_id, submission_id = seed_graded_submission(
            db_engine, clo_weights=[{"clo_id": "clo-1", "weight": 1}], score_percent=90.0,
        )

        resp = client.post("/api/calculate-attainment-rollup", json={
            "grade_id": grade_id, "submission_id": submission_id,
        })
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "evidence_count": 1,
            "clo_count": 1,
            "plo_count": 1,
            "ilo_count": 1,
        }
        assert dispatcher.completed == [f"grade-released:{grade_id}"]

        rows = client.get("/api/students/stu-1/attainment").json()
        assert [r["outcome_id"] for r in rows] == ["clo-1", "plo-1", "ilo-1"]
        assert all(r["attainment_percent"] == 90 for r in rows)
        assert all(r["attainment_level"] == "Excellent" for r in rows)

        filtered = client.get(
            "/api/students/stu-1/attainment", params={"course_id": "other"}
        ).json()
        assert filtered == []

    def test_recompute(self, client, db_engine):
        seed_outcome(db_engine, "clo-1", OutcomeTier.CLO)
        grade_id, submission_id = seed_graded_submission(
            db_engine, clo_weights=[{"clo_id": "clo-1", "weight": 1}],
        )
        client.post("/api/calculate-attainment-rollup", json={
            "grade_id": grade_id, "submission_id": submission_id,
        })

        resp = client.post(
            "/api/students/stu-1/attainment/recompute", json={"course_id": "course-1"}
        )
        assert resp.status_code == 200
        assert resp.json()["clo_count"] == 1


# ===========================================================================
# POST /api/reconcile
# ===========================================================================
class TestReconcileRoute:
    def test_reconcile_repairs_drift(self, client, db_engine):
        with Session(db_engine) as session:
            session.add(XPTransaction(student_id="stu-1", xp_amount=100, source="grade"))
            session.add(GamificationState(student_id="stu-1", xp_total=0, level=1))
            session.commit()

        resp = client.post("/api/reconcile")
        assert resp.status_code == 200
        body = resp.json()
        assert body["checked"] == 1
        assert body["corrected"] == 1
        assert body["corrections"][0]["actual_xp"] == 100

    def test_reconcile_one_student(self, client, db_engine):
        award_xp(db_engine, "stu-1", 10, "grade", now=NOW)
        award_xp(db_engine, "stu-2", 10, "grade", now=NOW)
        resp = client.post("/api/reconcile", json={"student_id": "stu-2"})
        assert resp.json()["checked"] == 1
        assert resp.json()["corrected"] == 0


# ===========================================================================
# Badges
# ===========================================================================
class TestBadgeRoutes:
    def test_check_badges(self, client, db_engine):
        with Session(db_engine) as session:
            session.add(GamificationState(student_id="stu-1", xp_total=0, level=1, streak_count=7))
            session.commit()

        resp = client.post("/api/check-badges", json={
            "student_id": "stu-1", "trigger": "streak_update",
        })
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "new_badges": ["streak_7"], "total_badges": 1}

        badges = client.get("/api/students/stu-1/badges").json()
        assert [b["badge_id"] for b in badges] == ["streak_7"]
        assert badges[0]["name"] == "7-Day Warrior"

    def test_unknown_trigger_is_400(self, client):
        resp = client.post("/api/check-badges", json={"student_id": "stu-1", "trigger": "nap"})
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("trigger is required")

    def test_missing_trigger_is_400(self, client):
        resp = client.post("/api/check-badges", json={"student_id": "stu-1"})
        assert resp.status_code == 400
