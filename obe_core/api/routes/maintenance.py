"""
obe_core.api.routes.maintenance — Cache maintenance triggers
=============================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from obe_core.api.deps import get_engine
from obe_core.services.reconciliation_service import reconcile_gamification

router = APIRouter(tags=["maintenance"])


class ReconcileRequest(BaseModel):
    student_id: str | None = None


class ReconciliationResult(BaseModel):
    checked: int
    corrected: int
    corrections: list[dict[str, Any]]
    timestamp: str


@router.post("/reconcile", response_model=ReconciliationResult)
def trigger_reconciliation(
    body: ReconcileRequest | None = None,
    engine: Engine = Depends(get_engine),
):
    """Recompute cached XP totals and levels from the ledger."""
    student_id = body.student_id if body else None
    return ReconciliationResult(**reconcile_gamification(engine, student_id))
