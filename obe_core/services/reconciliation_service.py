"""
obe_core.services.reconciliation_service — Ledger Reconciliation
=================================================================

Maintenance job that validates the ``student_gamification`` cache against the
``xp_transactions`` ledger and corrects drift if found.

Drift is expected: two concurrent ``award_xp`` calls for one student can
each re-sum the ledger before the other's row lands, and the later upsert
wins with a stale total.  The ledger itself is never wrong.

How it works:
    1. ``SUM(xp_amount)`` per student from ``xp_transactions``.
    2. Compare against the stored ``xp_total`` and ``level``.
    3. On mismatch, overwrite both with the ledger-derived values.
    4. Cached rows with a non-zero total but no ledger rows are reset to 0.
    5. Log all corrections for audit.

Streak columns are not touched; they have no independent source of truth.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select

from obe_core.database.engine import get_session
from obe_core.database.models import GamificationState, XPTransaction
from obe_core.engine.leveling import derive_level

logger = logging.getLogger(__name__)


def reconcile_gamification(engine: Engine, student_id: str | None = None) -> dict:
    """Recompute cached XP totals and levels from the ledger.

    Limited to one student when *student_id* is given.

    Returns ``{"checked": N, "corrected": M, "corrections": [...], "timestamp": ...}``.
    """
    corrections: list[dict] = []

    with get_session(engine) as session:
        # Ground truth: SUM(xp_amount) per student from the ledger
        truth_q = (
            select(
                XPTransaction.student_id,
                func.sum(XPTransaction.xp_amount).label("actual"),
            )
            .group_by(XPTransaction.student_id)
        )
        state_q = select(GamificationState)
        if student_id is not None:
            truth_q = truth_q.where(XPTransaction.student_id == student_id)
            state_q = state_q.where(GamificationState.student_id == student_id)

        truth_map: dict[str, int] = {
            row.student_id: int(row.actual or 0)
            for row in session.execute(truth_q).all()
        }
        state_map: dict[str, GamificationState] = {
            s.student_id: s for s in session.scalars(state_q).all()
        }

        checked = 0

        for sid, actual in truth_map.items():
            checked += 1
            state = state_map.get(sid)
            level = derive_level(actual)
            stored_xp = state.xp_total if state else None
            stored_level = state.level if state else None

            if stored_xp == actual and stored_level == level:
                continue

            corrections.append({
                "student_id": sid,
                "stored_xp": stored_xp,
                "actual_xp": actual,
                "stored_level": stored_level,
                "actual_level": level,
            })
            if state is None:
                session.add(GamificationState(
                    student_id=sid,
                    xp_total=actual,
                    level=level,
                    streak_count=0,
                    streak_freezes_available=0,
                ))
            else:
                state.xp_total = actual
                state.level = level

        # Cached totals with no ledger rows behind them (orphans)
        for sid, state in state_map.items():
            if sid in truth_map:
                continue
            checked += 1
            if (state.xp_total or 0) != 0 or (state.level or 1) != 1:
                corrections.append({
                    "student_id": sid,
                    "stored_xp": state.xp_total,
                    "actual_xp": 0,
                    "stored_level": state.level,
                    "actual_level": 1,
                })
                state.xp_total = 0
                state.level = 1

    if corrections:
        logger.warning(
            "Gamification reconciliation: corrected %d/%d students: %s",
            len(corrections), checked, corrections,
        )
    else:
        logger.info("Gamification reconciliation: all %d students match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": datetime.now(UTC).isoformat(),
    }
