"""Per-pair feature extraction: text, image, location and time sub-scores."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from campusmatch.config.settings import settings
from campusmatch.models.domain import FeatureBreakdown, ItemView
from campusmatch.services.geo import ZoneLookup, location_score
from campusmatch.services.image_similarity import BoundedImageScorer, NullImageSimilarity
from campusmatch.services.text_features import color_family, normalize
from campusmatch.services.text_similarity import TextSimilarityScorer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairFeatures:
    lost_item_id: str
    found_item_id: str
    breakdown: FeatureBreakdown
    degraded: tuple = field(default_factory=tuple)
    explanation: str = ""


def canonical_pair(a: ItemView, b: ItemView) -> tuple[ItemView, ItemView]:
    """Order a pair as (lost, found)."""
    if a.submission_type == "found" and b.submission_type == "lost":
        return b, a
    return a, b


def time_score(
    lost: ItemView,
    found: ItemView,
    short_h: float = settings.time_short_window_h,
    long_h: float = settings.time_long_window_h,
    grace_h: float = settings.time_order_grace_h,
) -> float:
    """1 within short_h, linear decay to 0 at long_h; 0 if found well before it was lost."""
    if lost.lost_or_found_at is None or found.lost_or_found_at is None:
        return 0.0
    delta_h = (found.lost_or_found_at - lost.lost_or_found_at).total_seconds() / 3600.0
    if delta_h < -grace_h:
        return 0.0
    gap = abs(delta_h)
    if gap <= short_h:
        return 1.0
    if gap >= long_h:
        return 0.0
    return 1.0 - (gap - short_h) / (long_h - short_h)


def explain(
    lost: ItemView,
    found: ItemView,
    breakdown: FeatureBreakdown,
    distance_km: Optional[float],
) -> str:
    reasons: List[str] = []
    if normalize(lost.category) and normalize(lost.category) == normalize(found.category):
        reasons.append(f"Same category ({lost.category})")
    if normalize(lost.color) and normalize(lost.color) == normalize(found.color):
        reasons.append(f"Same color ({lost.color})")
    elif color_family(lost.color) and color_family(lost.color) == color_family(found.color):
        reasons.append(f"Similar colors ({lost.color} / {found.color})")
    if breakdown.text >= 0.5:
        reasons.append("Similar descriptions")
    if lost.detected_objects and found.detected_objects:
        shared = sorted({str(o).lower() for o in lost.detected_objects} & {str(o).lower() for o in found.detected_objects})
        if shared:
            reasons.append("Common objects detected: " + ", ".join(shared))
    if breakdown.image >= 0.7:
        reasons.append("High visual similarity")
    if distance_km is not None and distance_km < 0.5:
        reasons.append(f"Close locations ({distance_km * 1000:.0f}m apart)")
    elif lost.zone_id and lost.zone_id == found.zone_id:
        reasons.append(f"Same campus zone ({lost.zone_id})")
    if breakdown.time >= 0.9:
        reasons.append("Lost and found within a day")
    elif breakdown.time >= 0.5:
        reasons.append("Similar timeframe")
    return "; ".join(reasons) if reasons else "Low similarity across all signals"


class FeatureVectorBuilder:
    """
    Computes the four sub-scores for a (lost, found) pair.

    Pure with respect to the database: works on ItemView copies so it can run on
    worker threads.
    """

    def __init__(
        self,
        text_scorer: TextSimilarityScorer,
        image_scorer: Optional[BoundedImageScorer] = None,
        zones: Optional[ZoneLookup] = None,
    ) -> None:
        self.text_scorer = text_scorer
        self.image_scorer = image_scorer or BoundedImageScorer(NullImageSimilarity())
        self.zones = zones

    def build(self, a: ItemView, b: ItemView) -> PairFeatures:
        lost, found = canonical_pair(a, b)
        degraded: List[str] = []

        text = self.text_scorer.score(lost, found)

        image, image_degraded = self.image_scorer.score(lost, found)
        if image_degraded:
            degraded.append("image")

        location, loc_degraded, distance_km = location_score(lost, found, self.zones)
        if loc_degraded:
            degraded.append("location")

        breakdown = FeatureBreakdown(
            text=text,
            image=image,
            location=location,
            time=time_score(lost, found),
        )
        return PairFeatures(
            lost_item_id=lost.item_id,
            found_item_id=found.item_id,
            breakdown=breakdown,
            degraded=tuple(degraded),
            explanation=explain(lost, found, breakdown, distance_km),
        )
