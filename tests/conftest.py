"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import Session

from obe_core.config import ObeConfig
from obe_core.database.models import (
    Assignment,
    AttainmentScope,
    Base,
    CourseEnrollment,
    Grade,
    LearningOutcome,
    OutcomeAttainment,
    OutcomeMapping,
    OutcomeTier,
    Profile,
    Submission,
)
from obe_core.services.dispatch import InlineDispatcher

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all obe-core tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` behind the async routes).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def dispatcher() -> InlineDispatcher:
    """Runs side effects synchronously so tests can assert on them."""
    return InlineDispatcher()


@pytest.fixture
def obe_config() -> ObeConfig:
    return ObeConfig(
        institution_name="Test University",
        api_port=8000,
        log_level="DEBUG",
        dispatcher_workers=1,
    )


@pytest.fixture
def client(db_engine, dispatcher, obe_config):
    """FastAPI TestClient wired to the SQLite engine and inline dispatcher."""
    from fastapi.testclient import TestClient

    from obe_core.api.deps import get_config, get_dispatcher, get_engine
    from obe_core.api.main import app

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: obe_config
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


def seed_outcome(engine: Engine, outcome_id: str, tier: OutcomeTier, **kwargs) -> str:
    with Session(engine) as session:
        session.add(LearningOutcome(
            id=outcome_id, tier=tier.value, title=kwargs.pop("title", outcome_id), **kwargs
        ))
        session.commit()
    return outcome_id


def seed_mapping(engine: Engine, source_id: str, target_id: str, weight: float = 1.0) -> None:
    with Session(engine) as session:
        session.add(OutcomeMapping(
            source_outcome_id=source_id, target_outcome_id=target_id, weight=weight
        ))
        session.commit()


def seed_graded_submission(
    engine: Engine,
    *,
    student_id: str = "stu-1",
    course_id: str = "course-1",
    clo_weights: list[dict] | None = None,
    score_percent: float = 90.0,
    suffix: str = "1",
    published_at: datetime | None = None,
    submitted_at: datetime | None = None,
) -> tuple[str, str]:
    """Insert assignment → submission → grade; returns ``(grade_id, submission_id)``.

    Timestamps left as ``None`` fall back to the server default (now).
    """
    with Session(engine) as session:
        assignment = Assignment(
            id=f"asg-{suffix}",
            course_id=course_id,
            title=f"Assignment {suffix}",
            clo_weights=clo_weights,
        )
        if published_at is not None:
            assignment.created_at = published_at
        submission = Submission(
            id=f"sub-{suffix}", assignment_id=assignment.id, student_id=student_id
        )
        if submitted_at is not None:
            submission.submitted_at = submitted_at
        grade = Grade(
            id=f"grade-{suffix}",
            submission_id=submission.id,
            total_score=score_percent,
            score_percent=score_percent,
        )
        session.add(assignment)
        session.flush()
        session.add(submission)
        session.flush()
        session.add(grade)
        session.commit()
    return f"grade-{suffix}", f"sub-{suffix}"


def seed_attainment(
    engine: Engine,
    outcome_id: str,
    percent: float,
    *,
    student_id: str = "stu-1",
    course_id: str = "course-1",
) -> None:
    """Insert a CLO attainment row directly."""
    with Session(engine) as session:
        session.add(OutcomeAttainment(
            outcome_id=outcome_id,
            student_id=student_id,
            course_id=course_id,
            scope=AttainmentScope.STUDENT_COURSE.value,
            attainment_percent=percent,
            sample_count=1,
            last_calculated_at=NOW,
        ))
        session.commit()


def seed_classmates(engine: Engine, course_id: str, *students: tuple[str, str]) -> None:
    """Enrol ``(student_id, full_name)`` pairs in *course_id*."""
    with Session(engine) as session:
        for student_id, full_name in students:
            if session.get(Profile, student_id) is None:
                session.add(Profile(id=student_id, full_name=full_name))
            session.add(CourseEnrollment(student_id=student_id, course_id=course_id))
        session.commit()
