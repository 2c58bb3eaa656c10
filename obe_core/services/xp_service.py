"""
obe_core.services.xp_service — XP Ledger & Leveling
====================================================

``award_xp`` is the only writer of the ``xp_transactions`` ledger.

Pipeline for a non-zero grant:
  1. Validate input (nothing is written on failure)
  2. Look up the highest active bonus multiplier (best-effort)
  3. Insert the ledger row with the multiplied amount and commit
  4. Re-sum the student's whole ledger
  5. Derive the level from the new total
  6. Compare with the previously cached level → level_up
  7. Upsert ``student_gamification``

Step 3 commits on its own, so a failure in 4–7 leaves the grant recorded and
only the cache stale; the next successful call re-sums and heals it.

Concurrent grants for the same student can race between steps 4 and 7 (a
read-recompute-write with no locking).  The last writer wins, and
``level_up`` may be reported twice.  Both are accepted; see
:mod:`obe_core.services.reconciliation_service`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from obe_core.database.models import (
    ID_LENGTH,
    BonusXPEvent,
    GamificationState,
    XPSource,
    XPTransaction,
)
from obe_core.engine.leveling import apply_bonus_multiplier, derive_level, highest_multiplier
from obe_core.errors import InsufficientXPError, StorageError, ValidationError

logger = logging.getLogger(__name__)

STREAK_FREEZE_COST = 200


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class XPAwardResult:
    xp_awarded: int = 0
    new_total: int = 0
    level_up: bool = False
    new_level: int = 1

    def to_dict(self) -> dict:
        return {
            "success": True,
            "xp_awarded": self.xp_awarded,
            "new_total": self.new_total,
            "level_up": self.level_up,
            "new_level": self.new_level,
        }


@dataclass
class FreezePurchaseResult:
    xp_spent: int
    new_total: int
    streak_freezes_available: int

    def to_dict(self) -> dict:
        return {
            "success": True,
            "xp_spent": self.xp_spent,
            "new_total": self.new_total,
            "streak_freezes_available": self.streak_freezes_available,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_student_id(student_id: object) -> str:
    if not isinstance(student_id, str) or not student_id.strip():
        raise ValidationError("student_id is required and must be a string")
    if len(student_id) > ID_LENGTH:
        raise ValidationError(f"student_id must be at most {ID_LENGTH} characters")
    return student_id


def _validate_award(student_id: object, amount: object, source: object) -> XPSource:
    validate_student_id(student_id)
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("xp_amount is required and must be an integer")
    try:
        return XPSource(source)
    except ValueError:
        valid = ", ".join(s.value for s in XPSource)
        raise ValidationError(
            f"source is required and must be one of: {valid}"
        ) from None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_xp_total(session: Session, student_id: str) -> int:
    """Canonical lifetime XP: the sum of every ledger row for the student."""
    total = session.scalar(
        select(func.coalesce(func.sum(XPTransaction.xp_amount), 0)).where(
            XPTransaction.student_id == student_id
        )
    )
    return int(total or 0)


def get_active_multiplier(session: Session, now: datetime) -> float | None:
    """Highest multiplier among bonus events whose window contains *now*."""
    rows = session.scalars(
        select(BonusXPEvent.multiplier).where(
            BonusXPEvent.start_date <= now,
            BonusXPEvent.end_date >= now,
        )
    ).all()
    return highest_multiplier(rows)


def _lookup_bonus_multiplier(engine: Engine, now: datetime) -> float | None:
    try:
        with Session(engine) as session:
            return get_active_multiplier(session, now)
    except SQLAlchemyError:
        # Never block a grant on the promo lookup
        logger.exception("Bonus event query failed; awarding without multiplier")
        return None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def _insert_transaction(
    engine: Engine,
    *,
    student_id: str,
    xp_amount: int,
    source: XPSource,
    reference_id: str | None,
    note: str | None,
    now: datetime,
) -> None:
    try:
        with Session(engine) as session:
            session.add(XPTransaction(
                student_id=student_id,
                xp_amount=xp_amount,
                source=source.value,
                reference_id=reference_id,
                note=note,
                created_at=now,
            ))
            session.commit()
    except SQLAlchemyError as exc:
        logger.exception("XP transaction insert failed for %s", student_id)
        raise StorageError(
            "Failed to insert XP transaction", detail=str(exc)
        ) from exc


def award_xp(
    engine: Engine,
    student_id: str,
    amount: int,
    source: XPSource | str,
    *,
    reference_id: str | None = None,
    note: str | None = None,
    now: datetime | None = None,
    apply_bonus: bool = True,
) -> XPAwardResult:
    """Append an XP grant to the ledger and refresh the cached total/level.

    A zero *amount* still writes a ledger row (audit trail) but skips the
    bonus lookup and the recompute, returning ``new_total=0, new_level=1``.

    Raises
    ------
    ValidationError
        Bad ``student_id``, ``amount`` or ``source``; nothing written.
    StorageError
        Ledger insert failed (nothing written) or the recompute/upsert failed
        (ledger row kept, cache stale).
    """
    xp_source = _validate_award(student_id, amount, source)
    now = now or datetime.now(UTC)

    if amount == 0:
        _insert_transaction(
            engine,
            student_id=student_id,
            xp_amount=0,
            source=xp_source,
            reference_id=reference_id,
            note=note,
            now=now,
        )
        return XPAwardResult(xp_awarded=0, new_total=0, level_up=False, new_level=1)

    final_xp = amount
    if apply_bonus:
        multiplier = _lookup_bonus_multiplier(engine, now)
        final_xp = apply_bonus_multiplier(amount, multiplier)
        if final_xp != amount:
            logger.info(
                "Bonus x%.2f applied to %s grant for %s: %d → %d",
                multiplier, xp_source.value, student_id, amount, final_xp,
            )

    _insert_transaction(
        engine,
        student_id=student_id,
        xp_amount=final_xp,
        source=xp_source,
        reference_id=reference_id,
        note=note,
        now=now,
    )

    try:
        with Session(engine) as session:
            new_total = get_xp_total(session, student_id)
            new_level = derive_level(new_total)

            state = session.get(GamificationState, student_id)
            previous_level = state.level if state is not None else 1
            if state is None:
                state = GamificationState(
                    student_id=student_id,
                    xp_total=new_total,
                    level=new_level,
                    streak_count=0,
                    streak_freezes_available=0,
                )
                session.add(state)
            else:
                state.xp_total = new_total
                state.level = new_level
            session.commit()
    except SQLAlchemyError as exc:
        logger.exception(
            "Gamification update failed for %s; ledger row kept", student_id
        )
        raise StorageError(
            "Failed to update gamification record", detail=str(exc)
        ) from exc

    level_up = new_level > previous_level
    if level_up:
        logger.info("Student %s levelled up %d → %d", student_id, previous_level, new_level)

    return XPAwardResult(
        xp_awarded=final_xp,
        new_total=new_total,
        level_up=level_up,
        new_level=new_level,
    )


# ---------------------------------------------------------------------------
# Streak freeze purchase
# ---------------------------------------------------------------------------
def purchase_streak_freeze(
    engine: Engine, student_id: str, *, now: datetime | None = None
) -> FreezePurchaseResult:
    """Spend :data:`STREAK_FREEZE_COST` XP on one extra streak freeze.

    The cost is a negative ledger row (never bonus-scaled).
    """
    validate_student_id(student_id)

    try:
        with Session(engine) as session:
            balance = get_xp_total(session, student_id)
    except SQLAlchemyError as exc:
        logger.exception("XP balance lookup failed for %s", student_id)
        raise StorageError("Failed to read XP balance", detail=str(exc)) from exc

    if balance < STREAK_FREEZE_COST:
        raise InsufficientXPError(
            f"A streak freeze costs {STREAK_FREEZE_COST} XP; balance is {balance}"
        )

    award = award_xp(
        engine,
        student_id,
        -STREAK_FREEZE_COST,
        XPSource.STREAK_FREEZE_PURCHASE,
        note="Streak freeze purchase",
        now=now,
        apply_bonus=False,
    )

    try:
        with Session(engine) as session:
            state = session.get(GamificationState, student_id)
            state.streak_freezes_available = (state.streak_freezes_available or 0) + 1
            freezes = state.streak_freezes_available
            session.commit()
    except SQLAlchemyError as exc:
        logger.exception("Streak freeze grant failed for %s after charging", student_id)
        raise StorageError("Failed to add streak freeze", detail=str(exc)) from exc

    return FreezePurchaseResult(
        xp_spent=STREAK_FREEZE_COST,
        new_total=award.new_total,
        streak_freezes_available=freezes,
    )
