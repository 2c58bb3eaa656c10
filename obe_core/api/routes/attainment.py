"""
obe_core.api.routes.attainment — Outcome attainment endpoints
==============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from obe_core.api.deps import get_config, get_dispatcher, get_engine
from obe_core.config import ObeConfig
from obe_core.database.engine import run_db
from obe_core.services import rollup_service
from obe_core.services.dispatch import TaskDispatcher

router = APIRouter(tags=["attainment"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RollupRequest(BaseModel):
    grade_id: str = Field(min_length=1)
    submission_id: str = Field(min_length=1)


class RollupResponse(BaseModel):
    success: bool
    evidence_count: int
    clo_count: int
    plo_count: int
    ilo_count: int
    message: str | None = None


class RecomputeRequest(BaseModel):
    course_id: str = Field(min_length=1)


class AttainmentRow(BaseModel):
    outcome_id: str
    title: str | None
    tier: str | None
    course_id: str
    scope: str
    attainment_percent: float
    attainment_level: str
    sample_count: int
    last_calculated_at: str | None


# ---------------------------------------------------------------------------
# POST /calculate-attainment-rollup
# ---------------------------------------------------------------------------
@router.post(
    "/calculate-attainment-rollup",
    response_model=RollupResponse,
    response_model_exclude_none=True,
)
async def calculate_attainment_rollup(
    body: RollupRequest,
    engine: Engine = Depends(get_engine),
    config: ObeConfig = Depends(get_config),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Cascade a finalized grade through CLO → PLO → ILO attainment."""
    result = await run_db(
        rollup_service.roll_up,
        engine,
        body.grade_id,
        body.submission_id,
        dispatcher=dispatcher,
        notify_student=config.grade_notifications,
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# /students/{student_id}/attainment
# ---------------------------------------------------------------------------
@router.get(
    "/students/{student_id}/attainment",
    response_model=list[AttainmentRow],
)
def get_attainment(
    student_id: str,
    engine: Engine = Depends(get_engine),
    course_id: str | None = Query(None),
):
    """Cached attainment for a student, optionally limited to one course."""
    return rollup_service.get_student_attainment(engine, student_id, course_id)


@router.post(
    "/students/{student_id}/attainment/recompute",
    response_model=RollupResponse,
    response_model_exclude_none=True,
)
async def recompute_attainment(
    student_id: str,
    body: RecomputeRequest,
    engine: Engine = Depends(get_engine),
):
    """Rebuild a student's attainment for one course from stored evidence."""
    result = await run_db(
        rollup_service.recompute_student_attainment,
        engine,
        student_id,
        body.course_id,
    )
    return result.to_dict()
