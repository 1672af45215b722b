# src/campusmatch/db/schema.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class Item(Base):
    """
    A lost or found report. Written by the surrounding application; the engine
    only reads it and moves it to `matched`.
    """
    __tablename__ = "items"

    item_id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    submission_type: Mapped[str] = mapped_column(String, nullable=False, index=True)  # lost/found
    submitter_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)

    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    material: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    zone_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    lost_or_found_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    reported_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    # draft -> submitted -> matched -> resolved -> archived
    status: Mapped[str] = mapped_column(String, nullable=False, default="submitted")

    # produced by the image/object detector collaborator
    image_urls_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detected_objects_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_embedding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    similarity_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class AiMatch(Base):
    """
    One scored pairing of a lost item and a found item.
    """
    __tablename__ = "ai_matches"

    match_id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    lost_item_id: Mapped[str] = mapped_column(String, nullable=False)
    found_item_id: Mapped[str] = mapped_column(String, nullable=False)

    similarity_score: Mapped[float] = mapped_column(Float, nullable=False)
    text_score: Mapped[float] = mapped_column(Float, nullable=False)
    image_score: Mapped[float] = mapped_column(Float, nullable=False)
    location_score: Mapped[float] = mapped_column(Float, nullable=False)
    time_score: Mapped[float] = mapped_column(Float, nullable=False)

    tier: Mapped[str] = mapped_column(String, nullable=False)  # full/partial/below_floor
    status: Mapped[str] = mapped_column(String, nullable=False)  # pending/accepted/rejected/overridden
    override_decision: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    decided_by: Mapped[str] = mapped_column(String, nullable=False, default="system")
    config_version: Mapped[int] = mapped_column(Integer, nullable=False)

    scoring_latency_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("lost_item_id", "found_item_id", name="uq_ai_matches_pair"),)


class AiConfiguration(Base):
    """
    Append-only thresholds/weights registry. Exactly one row is enabled.
    """
    __tablename__ = "ai_configurations"

    config_id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    auto_approve: Mapped[float] = mapped_column(Float, nullable=False)
    partial_match: Mapped[float] = mapped_column(Float, nullable=False)

    weight_text: Mapped[float] = mapped_column(Float, nullable=False)
    weight_image: Mapped[float] = mapped_column(Float, nullable=False)
    weight_location: Mapped[float] = mapped_column(Float, nullable=False)
    weight_time: Mapped[float] = mapped_column(Float, nullable=False)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("version", name="uq_ai_configurations_version"),)


class AiDecisionVersion(Base):
    """
    Snapshot of an AiMatch taken before a decision, override, rollback or re-score.
    """
    __tablename__ = "ai_decision_versions"

    version_id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    match_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(String, nullable=False)  # decision/override/rollback/rescore
    previous_state_json: Mapped[str] = mapped_column(Text, nullable=False)
    resulting_status: Mapped[str] = mapped_column(String, nullable=False)

    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Claim(Base):
    """
    A claimant's assertion of ownership over a found item.
    """
    __tablename__ = "claims"

    claim_id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    item_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    claimant_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    ownership_proofs_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    proof_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    combined_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confidence_tier: Mapped[str] = mapped_column(String, nullable=False, default="low")  # full/partial/low

    # pending/approved/rejected/withdrawn/conflict
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_leading: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suspicion_reasons_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    # set the first time the claim is flagged; never cleared by re-resolution or withdrawal
    ever_suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    assessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
