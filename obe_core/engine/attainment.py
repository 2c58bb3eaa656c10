"""
obe_core.engine.attainment — Attainment Bands & Aggregation
============================================================

Pure calculation for the outcome rollup.  The service layer fetches rows
and hands plain numbers to these functions.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from obe_core.database.models import AttainmentLevel, AttainmentScope, OutcomeTier

__all__ = [
    "ATTAINMENT_BANDS",
    "TIER_SCOPE",
    "WeightedAggregate",
    "classify_attainment",
    "mean_percent",
    "round_percent",
    "weighted_mean",
]

# Lower bound (inclusive) of each band, highest first
ATTAINMENT_BANDS: tuple[tuple[float, AttainmentLevel], ...] = (
    (85.0, AttainmentLevel.EXCELLENT),
    (70.0, AttainmentLevel.SATISFACTORY),
    (50.0, AttainmentLevel.DEVELOPING),
)

TIER_SCOPE: dict[OutcomeTier, AttainmentScope] = {
    OutcomeTier.CLO: AttainmentScope.STUDENT_COURSE,
    OutcomeTier.PLO: AttainmentScope.COURSE,
    OutcomeTier.ILO: AttainmentScope.PROGRAM,
}


@dataclass(frozen=True, slots=True)
class WeightedAggregate:
    percent: float
    total_weight: float
    sample_count: int


def classify_attainment(percent: float) -> AttainmentLevel:
    for lower_bound, level in ATTAINMENT_BANDS:
        if percent >= lower_bound:
            return level
    return AttainmentLevel.NOT_YET


def round_percent(value: float) -> float:
    """Round half-up to two decimals (the stored precision)."""
    return math.floor(value * 100 + 0.5) / 100


def mean_percent(scores: Iterable[float]) -> float | None:
    values = list(scores)
    if not values:
        return None
    return sum(values) / len(values)


def weighted_mean(
    items: Iterable[tuple[float, float, int]],
) -> WeightedAggregate | None:
    """Weighted mean over ``(percent, weight, sample_count)`` triples.

    Returns ``None`` when the total weight is zero (nothing to aggregate).
    Callers pass only children that already have an attainment; missing
    children are excluded from both sums rather than counted as zero.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    samples = 0
    for percent, weight, sample_count in items:
        weighted_sum += percent * weight
        total_weight += weight
        samples += sample_count

    if total_weight == 0:
        return None
    return WeightedAggregate(
        percent=weighted_sum / total_weight,
        total_weight=total_weight,
        sample_count=samples,
    )
