"""Similarity aggregation and confidence tiering."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Mapping

from campusmatch.models.domain import SIGNALS, FeatureBreakdown, Thresholds, Weights

TIER_FULL = "full"
TIER_PARTIAL = "partial"
TIER_BELOW_FLOOR = "below_floor"

# system decision implied by each tier
TIER_STATUS: Dict[str, str] = {
    TIER_FULL: "accepted",
    TIER_PARTIAL: "pending",
    TIER_BELOW_FLOOR: "rejected",
}


@dataclass(frozen=True)
class ScoredPair:
    """Aggregate score plus the breakdown it was computed from."""

    score: float
    breakdown: FeatureBreakdown
    tier: str
    config_version: int


def _clamp01(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


def aggregate(breakdown: Mapping[str, float], weights: Weights) -> float:
    """
    Weighted mean of the sub-scores: sum(w_i * s_i) / sum(w_i).

    Weights are relative; they need not add up to 1 or 100.
    """
    w = weights.as_dict()
    total = math.fsum(w[name] for name in SIGNALS)
    if total <= 0:
        return 0.0
    weighted = math.fsum(w[name] * _clamp01(breakdown[name]) for name in SIGNALS)
    return _clamp01(weighted / total)


def classify_tier(score: float, thresholds: Thresholds) -> str:
    """Thresholds are percentages; boundaries are inclusive."""
    if score >= thresholds.auto_approve / 100.0:
        return TIER_FULL
    if score >= thresholds.partial_match / 100.0:
        return TIER_PARTIAL
    return TIER_BELOW_FLOOR


def score_breakdown(breakdown: FeatureBreakdown, weights: Weights, thresholds: Thresholds, config_version: int) -> ScoredPair:
    score = aggregate(breakdown.as_dict(), weights)
    return ScoredPair(
        score=score,
        breakdown=breakdown,
        tier=classify_tier(score, thresholds),
        config_version=config_version,
    )
