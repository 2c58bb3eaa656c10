"""
obe_core.api.routes.gamification — XP, streak, freeze and badge endpoints
==========================================================================

The write endpoints are invoked by the platform on events (a graded
activity, an authenticated visit, a freeze purchase, anything that might
unlock a badge).  Each runs its service on a worker thread via
:func:`run_db`.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from obe_core.api.deps import get_config, get_dispatcher, get_engine
from obe_core.config import ObeConfig
from obe_core.database.engine import run_db
from obe_core.services import badge_service, streak_service, xp_service
from obe_core.services.dispatch import TaskDispatcher

router = APIRouter(tags=["gamification"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AwardXPRequest(BaseModel):
    student_id: str = Field(min_length=1)
    xp_amount: int = Field(strict=True)
    source: str
    reference_id: str | None = None
    note: str | None = None


class AwardXPResponse(BaseModel):
    success: bool
    xp_awarded: int
    new_total: int
    level_up: bool
    new_level: int


class ProcessStreakRequest(BaseModel):
    student_id: str = Field(min_length=1)


class ProcessStreakResponse(BaseModel):
    success: bool
    streak_count: int
    milestone_reached: int | None
    streak_frozen: bool


class StreakFreezeResponse(BaseModel):
    success: bool
    xp_spent: int
    new_total: int
    streak_freezes_available: int


# ---------------------------------------------------------------------------
# POST /award-xp
# ---------------------------------------------------------------------------
@router.post("/award-xp", response_model=AwardXPResponse)
async def award_xp(body: AwardXPRequest, engine: Engine = Depends(get_engine)):
    """Append an XP grant to the ledger and refresh the cached level."""
    result = await run_db(
        xp_service.award_xp,
        engine,
        body.student_id,
        body.xp_amount,
        body.source,
        reference_id=body.reference_id,
        note=body.note,
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# POST /process-streak
# ---------------------------------------------------------------------------
@router.post("/process-streak", response_model=ProcessStreakResponse)
async def process_streak(
    body: ProcessStreakRequest,
    engine: Engine = Depends(get_engine),
    config: ObeConfig = Depends(get_config),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Record today's visit and advance the student's streak."""
    outcome = await run_db(
        streak_service.process_streak,
        engine,
        body.student_id,
        dispatcher=dispatcher,
        announce_to_peers=config.peer_milestone_notifications,
    )
    return outcome.to_dict()


# ---------------------------------------------------------------------------
# /students/{student_id}/…
# ---------------------------------------------------------------------------
@router.post(
    "/students/{student_id}/streak-freezes",
    response_model=StreakFreezeResponse,
)
async def purchase_streak_freeze(student_id: str, engine: Engine = Depends(get_engine)):
    """Spend XP on one additional streak freeze."""
    result = await run_db(xp_service.purchase_streak_freeze, engine, student_id)
    return result.to_dict()


@router.get("/students/{student_id}/gamification")
def get_gamification(student_id: str, engine: Engine = Depends(get_engine)):
    """Level progress and streak summary for one student."""
    return streak_service.get_gamification_summary(engine, student_id)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------
class CheckBadgesRequest(BaseModel):
    student_id: str = Field(min_length=1)
    trigger: str


class CheckBadgesResponse(BaseModel):
    success: bool
    new_badges: list[str]
    total_badges: int


@router.post("/check-badges", response_model=CheckBadgesResponse)
async def check_badges(
    body: CheckBadgesRequest,
    engine: Engine = Depends(get_engine),
    config: ObeConfig = Depends(get_config),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Award any badges unlocked by the triggering activity."""
    result = await run_db(
        badge_service.check_badges,
        engine,
        body.student_id,
        body.trigger,
        dispatcher=dispatcher,
        announce_to_peers=config.peer_milestone_notifications,
    )
    return result.to_dict()


@router.get("/students/{student_id}/badges")
def get_badges(student_id: str, engine: Engine = Depends(get_engine)):
    """Badges held by one student, oldest first."""
    return badge_service.get_student_badges(engine, student_id)
