from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from campusmatch.db.schema import AiConfiguration, AiMatch, Item


SIGNALS = ("text", "image", "location", "time")


@dataclass(frozen=True)
class Thresholds:
    """Percentages in [0, 100]."""

    auto_approve: float
    partial_match: float


@dataclass(frozen=True)
class Weights:
    text: float
    image: float
    location: float
    time: float

    def as_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in SIGNALS}

    def total(self) -> float:
        return sum(self.as_dict().values())


@dataclass(frozen=True)
class ConfigSnapshot:
    version: int
    thresholds: Thresholds
    weights: Weights
    enabled: bool = True
    updated_by: str | None = None
    created_at: datetime | None = None
    is_fallback: bool = False

    @classmethod
    def from_row(cls, row: AiConfiguration) -> "ConfigSnapshot":
        return cls(
            version=row.version,
            thresholds=Thresholds(auto_approve=row.auto_approve, partial_match=row.partial_match),
            weights=Weights(
                text=row.weight_text,
                image=row.weight_image,
                location=row.weight_location,
                time=row.weight_time,
            ),
            enabled=row.enabled,
            updated_by=row.updated_by,
            created_at=row.created_at,
        )


# Used whenever the version store cannot name exactly one enabled configuration.
SAFE_DEFAULT_CONFIG = ConfigSnapshot(
    version=0,
    thresholds=Thresholds(auto_approve=85.0, partial_match=50.0),
    weights=Weights(text=30.0, image=35.0, location=20.0, time=15.0),
    enabled=True,
    updated_by="system",
    is_fallback=True,
)


@dataclass(frozen=True)
class FeatureBreakdown:
    text: float
    image: float
    location: float
    time: float

    def as_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in SIGNALS}

    @classmethod
    def from_match(cls, row: AiMatch) -> "FeatureBreakdown":
        return cls(
            text=row.text_score,
            image=row.image_score,
            location=row.location_score,
            time=row.time_score,
        )


def _load_list(raw: Optional[str]) -> tuple:
    if not raw:
        return ()
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return ()
    return tuple(value) if isinstance(value, list) else ()


@dataclass(frozen=True)
class ItemView:
    """Detached, immutable copy of an item row; safe to share across scoring threads."""

    item_id: str
    submission_type: str
    description: str
    category: str = ""
    color: str | None = None
    material: str | None = None
    size: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    zone_id: str | None = None
    lost_or_found_at: datetime | None = None
    reported_at: datetime | None = None
    status: str = "submitted"
    submitter_id: str | None = None
    image_urls: tuple = field(default_factory=tuple)
    detected_objects: tuple = field(default_factory=tuple)
    image_embedding: tuple = field(default_factory=tuple)

    @classmethod
    def from_row(cls, row: Item) -> "ItemView":
        return cls(
            item_id=row.item_id,
            submission_type=row.submission_type,
            description=row.description or "",
            category=row.category or "",
            color=row.color,
            material=row.material,
            size=row.size,
            latitude=row.latitude,
            longitude=row.longitude,
            zone_id=row.zone_id,
            lost_or_found_at=row.lost_or_found_at,
            reported_at=row.reported_at,
            status=row.status,
            submitter_id=row.submitter_id,
            image_urls=_load_list(row.image_urls_json),
            detected_objects=_load_list(row.detected_objects_json),
            image_embedding=tuple(float(v) for v in _load_list(row.image_embedding_json)),
        )


@dataclass(frozen=True)
class MatchState:
    """The mutable fields of an AiMatch, as captured in decision versions."""

    similarity_score: float
    breakdown: dict
    tier: str
    status: str
    override_decision: str | None
    decided_by: str
    config_version: int

    @classmethod
    def capture(cls, row: AiMatch) -> "MatchState":
        return cls(
            similarity_score=float(row.similarity_score),
            breakdown=FeatureBreakdown.from_match(row).as_dict(),
            tier=row.tier,
            status=row.status,
            override_decision=row.override_decision,
            decided_by=row.decided_by,
            config_version=int(row.config_version),
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "MatchState":
        data = json.loads(raw)
        return cls(
            similarity_score=float(data["similarity_score"]),
            breakdown={k: float(v) for k, v in data["breakdown"].items()},
            tier=data["tier"],
            status=data["status"],
            override_decision=data.get("override_decision"),
            decided_by=data.get("decided_by", "system"),
            config_version=int(data.get("config_version", 0)),
        )

    def apply_to(self, row: AiMatch) -> None:
        row.similarity_score = self.similarity_score
        row.text_score = self.breakdown["text"]
        row.image_score = self.breakdown["image"]
        row.location_score = self.breakdown["location"]
        row.time_score = self.breakdown["time"]
        row.tier = self.tier
        row.status = self.status
        row.override_decision = self.override_decision
        row.decided_by = self.decided_by
        row.config_version = self.config_version
