"""Distance and zone helpers for the location sub-score."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Protocol

from campusmatch.config.settings import settings
from campusmatch.models.domain import ItemView

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class ZoneLookup(Protocol):
    def centroid(self, zone_id: str) -> Optional[tuple[float, float]]:
        """(latitude, longitude) of a campus zone, or None if unknown."""
        raise NotImplementedError


@dataclass(frozen=True)
class InMemoryZoneLookup:
    centroids: dict = field(default_factory=dict)

    def centroid(self, zone_id: str) -> Optional[tuple[float, float]]:
        return self.centroids.get(zone_id)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dp = p2 - p1
    dl = math.radians(lon2 - lon1)
    h = math.sin(dp / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def distance_score(distance_km: float, near_km: float, max_km: float) -> float:
    """1 inside near_km, linear decay to 0 at max_km."""
    if distance_km <= near_km:
        return 1.0
    if distance_km >= max_km:
        return 0.0
    return 1.0 - (distance_km - near_km) / (max_km - near_km)


def _coordinates(item: ItemView, zones: Optional[ZoneLookup]) -> Optional[tuple[float, float]]:
    if item.latitude is not None and item.longitude is not None:
        return item.latitude, item.longitude
    if item.zone_id and zones is not None:
        try:
            return zones.centroid(item.zone_id)
        except Exception as e:
            logger.warning("zone lookup failed for %s: %s", item.zone_id, e)
    return None


def location_score(
    a: ItemView,
    b: ItemView,
    zones: Optional[ZoneLookup] = None,
    near_km: float = settings.location_near_km,
    max_km: float = settings.location_max_km,
    zone_floor: float = settings.zone_floor,
) -> tuple[float, bool, Optional[float]]:
    """
    Returns (score, degraded, distance_km).

    degraded is True when a position could not be resolved for either side.
    """
    same_zone = bool(a.zone_id) and a.zone_id == b.zone_id
    floor = zone_floor if same_zone else 0.0

    pa, pb = _coordinates(a, zones), _coordinates(b, zones)
    if pa is None or pb is None:
        return floor, True, None

    km = haversine_km(pa[0], pa[1], pb[0], pb[1])
    return max(floor, distance_score(km, near_km, max_km)), False, km
