"""
obe_core.services.rollup_service — Outcome Attainment Rollup
=============================================================

Cascades one finalized grade through the outcome forest:

    Grade ──► Evidence (one per CLO on the assignment)
          ──► CLO attainment   scope=student_course   mean of ALL evidence
          ──► PLO attainment   scope=course           weighted mean of CLOs
          ──► ILO attainment   scope=program          weighted mean of PLOs

Every tier is a full recompute from the tier below as it exists in storage,
so re-running the rollup (or :func:`recompute_student_attainment`) converges
on the same numbers.  Evidence is unique per ``(grade_id, clo_id)``; a retry
for the same grade does not add a second sample.

Failure policy:
    * grade / submission / assignment lookup — fatal (``NotFoundError`` /
      ``StorageError``)
    * evidence insert, any single outcome's recompute — logged, loop continues
    * the ``grade_released`` notification — dispatched, never awaited
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from obe_core.database.engine import get_session
from obe_core.database.models import (
    Assignment,
    AttainmentScope,
    ID_LENGTH,
    Evidence,
    Grade,
    LearningOutcome,
    OutcomeAttainment,
    OutcomeMapping,
    OutcomeTier,
    Submission,
)
from obe_core.engine.attainment import (
    TIER_SCOPE,
    classify_attainment,
    mean_percent,
    round_percent,
    weighted_mean,
)
from obe_core.errors import NotFoundError, StorageError, ValidationError
from obe_core.services.dispatch import TaskDispatcher, get_dispatcher
from obe_core.services.notification_service import notify_grade_released

logger = logging.getLogger(__name__)

NO_CLO_WEIGHTS_MESSAGE = "No CLO weights on assignment; nothing to roll up"

_SCOPE_ORDER = {
    AttainmentScope.STUDENT_COURSE.value: 0,
    AttainmentScope.COURSE.value: 1,
    AttainmentScope.PROGRAM.value: 2,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass
class RollupResult:
    evidence_count: int = 0
    clo_count: int = 0
    plo_count: int = 0
    ilo_count: int = 0
    message: str | None = None

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "evidence_count": self.evidence_count,
            "clo_count": self.clo_count,
            "plo_count": self.plo_count,
            "ilo_count": self.ilo_count,
        }
        if self.message:
            body["message"] = self.message
        return body


@dataclass(frozen=True, slots=True)
class GradeContext:
    """Everything the cascade needs, resolved from grade → submission → assignment."""

    grade_id: str
    submission_id: str
    assignment_id: str
    student_id: str
    course_id: str
    score_percent: float
    clo_ids: tuple[str, ...]


def distinct_clo_ids(clo_weights: Iterable[dict] | None) -> tuple[str, ...]:
    """CLO ids from an assignment's ``clo_weights`` list, first occurrence wins."""
    seen: dict[str, None] = {}
    for entry in clo_weights or ():
        if isinstance(entry, dict) and entry.get("clo_id"):
            seen.setdefault(str(entry["clo_id"]), None)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Step 0: resolve the grade chain
# ---------------------------------------------------------------------------
def _load_context(engine: Engine, grade_id: str, submission_id: str) -> GradeContext:
    try:
        with Session(engine) as session:
            grade = session.get(Grade, grade_id)
            if grade is None:
                raise NotFoundError(f"Grade not found: {grade_id}")

            submission = session.get(Submission, submission_id)
            if submission is None:
                raise NotFoundError(f"Submission not found: {submission_id}")
            if grade.submission_id != submission.id:
                raise ValidationError(
                    f"Grade {grade_id} does not belong to submission {submission_id}"
                )

            assignment = session.get(Assignment, submission.assignment_id)
            if assignment is None:
                raise NotFoundError(f"Assignment not found: {submission.assignment_id}")

            return GradeContext(
                grade_id=grade.id,
                submission_id=submission.id,
                assignment_id=assignment.id,
                student_id=submission.student_id,
                course_id=assignment.course_id,
                score_percent=float(grade.score_percent),
                clo_ids=distinct_clo_ids(assignment.clo_weights),
            )
    except SQLAlchemyError as exc:
        logger.exception("Grade context lookup failed for grade %s", grade_id)
        raise StorageError("Failed to load grade context", detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Step 1: evidence
# ---------------------------------------------------------------------------
def _record_evidence(engine: Engine, ctx: GradeContext) -> int:
    """Insert one evidence row per CLO; returns how many were new."""
    level = classify_attainment(ctx.score_percent).value
    inserted = 0
    try:
        with Session(engine) as session:
            for clo_id in ctx.clo_ids:
                try:
                    with session.begin_nested():   # SAVEPOINT
                        session.add(Evidence(
                            student_id=ctx.student_id,
                            submission_id=ctx.submission_id,
                            grade_id=ctx.grade_id,
                            clo_id=clo_id,
                            score_percent=ctx.score_percent,
                            attainment_level=level,
                        ))
                        session.flush()
                    inserted += 1
                except IntegrityError:
                    logger.debug(
                        "Evidence for grade %s / CLO %s already recorded",
                        ctx.grade_id, clo_id,
                    )
                except SQLAlchemyError:
                    logger.exception("Evidence insert failed for CLO %s", clo_id)
            session.commit()
    except SQLAlchemyError:
        logger.exception("Evidence commit failed for grade %s", ctx.grade_id)
    return inserted


# ---------------------------------------------------------------------------
# Cache helpers
# ---------------------------------------------------------------------------
def _find_attainment(
    session: Session,
    *,
    outcome_id: str,
    student_id: str,
    course_id: str,
    scope: AttainmentScope,
) -> OutcomeAttainment | None:
    return session.scalar(
        select(OutcomeAttainment).where(
            OutcomeAttainment.outcome_id == outcome_id,
            OutcomeAttainment.student_id == student_id,
            OutcomeAttainment.course_id == course_id,
            OutcomeAttainment.scope == scope.value,
        )
    )


def _latest_attainment(
    session: Session,
    *,
    outcome_id: str,
    student_id: str,
    scope: AttainmentScope,
) -> OutcomeAttainment | None:
    """Most recently calculated row for an outcome in any course."""
    return session.scalars(
        select(OutcomeAttainment)
        .where(
            OutcomeAttainment.outcome_id == outcome_id,
            OutcomeAttainment.student_id == student_id,
            OutcomeAttainment.scope == scope.value,
        )
        .order_by(OutcomeAttainment.last_calculated_at.desc())
        .limit(1)
    ).first()


def _upsert_attainment(
    session: Session,
    *,
    outcome_id: str,
    student_id: str,
    course_id: str,
    scope: AttainmentScope,
    percent: float,
    sample_count: int,
    now: datetime,
) -> OutcomeAttainment:
    row = _find_attainment(
        session,
        outcome_id=outcome_id,
        student_id=student_id,
        course_id=course_id,
        scope=scope,
    )
    if row is None:
        row = OutcomeAttainment(
            outcome_id=outcome_id,
            student_id=student_id,
            course_id=course_id,
            scope=scope.value,
        )
        session.add(row)
    row.attainment_percent = round_percent(percent)
    row.sample_count = sample_count
    row.last_calculated_at = now
    return row


def _mapping_targets(session: Session, source_id: str) -> set[str]:
    return set(session.scalars(
        select(OutcomeMapping.target_outcome_id).where(
            OutcomeMapping.source_outcome_id == source_id
        )
    ).all())


# ---------------------------------------------------------------------------
# Step 2: CLO tier
# ---------------------------------------------------------------------------
def _rollup_clos(
    engine: Engine,
    *,
    student_id: str,
    course_id: str,
    clo_ids: Iterable[str],
    now: datetime,
) -> set[str]:
    """Recompute each CLO from all of the student's evidence.

    Returns the PLOs mapped from the CLOs that were written.
    """
    affected_plos: set[str] = set()
    for clo_id in clo_ids:
        try:
            with get_session(engine) as session:
                scores = session.scalars(
                    select(Evidence.score_percent).where(
                        Evidence.student_id == student_id,
                        Evidence.clo_id == clo_id,
                    )
                ).all()
                avg = mean_percent(scores)
                if avg is None:
                    logger.warning("No evidence for student %s on CLO %s", student_id, clo_id)
                    continue
                _upsert_attainment(
                    session,
                    outcome_id=clo_id,
                    student_id=student_id,
                    course_id=course_id,
                    scope=TIER_SCOPE[OutcomeTier.CLO],
                    percent=avg,
                    sample_count=len(scores),
                    now=now,
                )

            with Session(engine) as session:
                affected_plos |= _mapping_targets(session, clo_id)
        except SQLAlchemyError:
            logger.exception("CLO attainment rollup failed for %s", clo_id)
    return affected_plos


# ---------------------------------------------------------------------------
# Steps 3 & 4: PLO and ILO tiers
# ---------------------------------------------------------------------------
def _rollup_parents(
    engine: Engine,
    *,
    student_id: str,
    course_id: str,
    parent_ids: Iterable[str],
    child_scope: AttainmentScope,
    parent_scope: AttainmentScope,
    now: datetime,
) -> set[str]:
    """Weighted mean of each parent's children as they exist in storage.

    Children are read across all of the student's courses (a PLO spans the
    program); the newest row wins when one outcome has several.  The parent
    row is keyed by *course_id*.  Children without an attainment row are left
    out of both sums.  Returns the next tier's outcomes mapped from the
    parents that were written.
    """
    next_tier: set[str] = set()
    for parent_id in sorted(parent_ids):
        try:
            with get_session(engine) as session:
                mappings = session.execute(
                    select(OutcomeMapping.source_outcome_id, OutcomeMapping.weight).where(
                        OutcomeMapping.target_outcome_id == parent_id
                    )
                ).all()

                items: list[tuple[float, float, int]] = []
                for source_id, weight in mappings:
                    child = _latest_attainment(
                        session,
                        outcome_id=source_id,
                        student_id=student_id,
                        scope=child_scope,
                    )
                    if child is None or child.attainment_percent is None:
                        continue
                    items.append((
                        child.attainment_percent,
                        weight if weight is not None else 1.0,
                        child.sample_count or 0,
                    ))

                aggregate = weighted_mean(items)
                if aggregate is None:
                    continue
                _upsert_attainment(
                    session,
                    outcome_id=parent_id,
                    student_id=student_id,
                    course_id=course_id,
                    scope=parent_scope,
                    percent=aggregate.percent,
                    sample_count=aggregate.sample_count,
                    now=now,
                )

            with Session(engine) as session:
                next_tier |= _mapping_targets(session, parent_id)
        except SQLAlchemyError:
            logger.exception("%s attainment rollup failed for %s", parent_scope.value, parent_id)
    return next_tier


def _cascade(
    engine: Engine,
    *,
    student_id: str,
    course_id: str,
    clo_ids: Iterable[str],
    now: datetime,
) -> tuple[set[str], set[str]]:
    """Run CLO → PLO → ILO; returns the affected PLO and ILO sets."""
    plos = _rollup_clos(
        engine, student_id=student_id, course_id=course_id, clo_ids=clo_ids, now=now,
    )
    ilos = _rollup_parents(
        engine,
        student_id=student_id,
        course_id=course_id,
        parent_ids=plos,
        child_scope=TIER_SCOPE[OutcomeTier.CLO],
        parent_scope=TIER_SCOPE[OutcomeTier.PLO],
        now=now,
    )
    _rollup_parents(
        engine,
        student_id=student_id,
        course_id=course_id,
        parent_ids=ilos,
        child_scope=TIER_SCOPE[OutcomeTier.PLO],
        parent_scope=TIER_SCOPE[OutcomeTier.ILO],
        now=now,
    )
    return plos, ilos


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def roll_up(
    engine: Engine,
    grade_id: str,
    submission_id: str,
    *,
    now: datetime | None = None,
    dispatcher: TaskDispatcher | None = None,
    notify_student: bool = True,
) -> RollupResult:
    """Record evidence for a finalized grade and refresh the three tiers.

    ``evidence_count`` is the number of distinct CLOs on the assignment, so a
    retry for the same grade reports the same counts.

    Raises
    ------
    ValidationError
        ``grade_id`` or ``submission_id`` missing.
    NotFoundError
        The grade, submission or assignment does not exist.
    StorageError
        The grade chain could not be read.
    """
    for name, value in (("grade_id", grade_id), ("submission_id", submission_id)):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required and must be a string")
        if len(value) > ID_LENGTH:
            raise ValidationError(f"{name} must be at most {ID_LENGTH} characters")

    now = now or datetime.now(UTC)
    ctx = _load_context(engine, grade_id, submission_id)

    if not ctx.clo_ids:
        logger.info("Assignment %s has no CLO weights; rollup skipped", ctx.assignment_id)
        return RollupResult(message=NO_CLO_WEIGHTS_MESSAGE)

    inserted = _record_evidence(engine, ctx)
    if inserted < len(ctx.clo_ids):
        logger.info(
            "Grade %s: %d of %d evidence rows already existed",
            grade_id, len(ctx.clo_ids) - inserted, len(ctx.clo_ids),
        )

    plos, ilos = _cascade(
        engine,
        student_id=ctx.student_id,
        course_id=ctx.course_id,
        clo_ids=ctx.clo_ids,
        now=now,
    )

    if notify_student:
        (dispatcher or get_dispatcher()).submit(
            f"grade-released:{grade_id}",
            notify_grade_released,
            engine,
            student_id=ctx.student_id,
            assignment_id=ctx.assignment_id,
            grade_id=ctx.grade_id,
            score_percent=ctx.score_percent,
        )

    logger.info(
        "Rollup for grade %s: %d CLOs, %d PLOs, %d ILOs",
        grade_id, len(ctx.clo_ids), len(plos), len(ilos),
    )
    return RollupResult(
        evidence_count=len(ctx.clo_ids),
        clo_count=len(ctx.clo_ids),
        plo_count=len(plos),
        ilo_count=len(ilos),
    )


def recompute_student_attainment(
    engine: Engine,
    student_id: str,
    course_id: str,
    *,
    now: datetime | None = None,
) -> RollupResult:
    """Rebuild a student's attainment for one course from existing evidence.

    No evidence is written; ``evidence_count`` reports how many rows were read.
    """
    for name, value in (("student_id", student_id), ("course_id", course_id)):
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{name} is required and must be a string")
        if len(value) > ID_LENGTH:
            raise ValidationError(f"{name} must be at most {ID_LENGTH} characters")

    now = now or datetime.now(UTC)
    try:
        with Session(engine) as session:
            rows = session.scalars(
                select(Evidence.clo_id)
                .join(Submission, Submission.id == Evidence.submission_id)
                .join(Assignment, Assignment.id == Submission.assignment_id)
                .where(
                    Evidence.student_id == student_id,
                    Assignment.course_id == course_id,
                )
            ).all()
    except SQLAlchemyError as exc:
        logger.exception("Evidence scan failed for %s / %s", student_id, course_id)
        raise StorageError("Failed to read evidence", detail=str(exc)) from exc

    clo_ids = sorted(set(rows))
    if not clo_ids:
        return RollupResult(message="No evidence for this student in this course")

    plos, ilos = _cascade(
        engine, student_id=student_id, course_id=course_id, clo_ids=clo_ids, now=now,
    )
    return RollupResult(
        evidence_count=len(rows),
        clo_count=len(clo_ids),
        plo_count=len(plos),
        ilo_count=len(ilos),
        message="Rebuilt from existing evidence",
    )


def get_student_attainment(
    engine: Engine, student_id: str, course_id: str | None = None
) -> list[dict]:
    """Cached attainment rows for a student, CLOs first, then PLOs, then ILOs."""
    if not isinstance(student_id, str) or not student_id.strip():
        raise ValidationError("student_id is required and must be a string")

    stmt = (
        select(OutcomeAttainment, LearningOutcome.title, LearningOutcome.tier)
        .outerjoin(LearningOutcome, LearningOutcome.id == OutcomeAttainment.outcome_id)
        .where(OutcomeAttainment.student_id == student_id)
    )
    if course_id:
        stmt = stmt.where(OutcomeAttainment.course_id == course_id)

    try:
        with Session(engine) as session:
            rows = session.execute(stmt).all()
            results = [
                {
                    "outcome_id": att.outcome_id,
                    "title": title,
                    "tier": tier,
                    "course_id": att.course_id,
                    "scope": att.scope,
                    "attainment_percent": att.attainment_percent,
                    "attainment_level": classify_attainment(att.attainment_percent).value,
                    "sample_count": att.sample_count,
                    "last_calculated_at": (
                        att.last_calculated_at.isoformat() if att.last_calculated_at else None
                    ),
                }
                for att, title, tier in rows
            ]
    except SQLAlchemyError as exc:
        logger.exception("Attainment read failed for %s", student_id)
        raise StorageError("Failed to read attainment", detail=str(exc)) from exc

    results.sort(key=lambda r: (_SCOPE_ORDER.get(r["scope"], 9), r["course_id"], r["outcome_id"]))
    return results
