"""API schemas."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from campusmatch.db.schema import AiDecisionVersion, AiMatch, Claim
from campusmatch.models.domain import ConfigSnapshot


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ThresholdsIn(_CamelModel):
    auto_approve: float = Field(alias="autoApprove")
    partial_match: float = Field(alias="partialMatch")


class WeightsIn(BaseModel):
    text: float
    image: float
    location: float
    time: float


class AiConfigUpdate(BaseModel):
    thresholds: ThresholdsIn
    weights: WeightsIn


class AiConfigOut(_CamelModel):
    version: int
    thresholds: ThresholdsIn
    weights: WeightsIn
    enabled: bool
    updated_by: Optional[str] = Field(None, alias="updatedBy")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    is_fallback: bool = Field(False, alias="isFallback")

    @classmethod
    def from_snapshot(cls, snap: ConfigSnapshot) -> "AiConfigOut":
        return cls(
            version=snap.version,
            thresholds=ThresholdsIn(auto_approve=snap.thresholds.auto_approve, partial_match=snap.thresholds.partial_match),
            weights=WeightsIn(**snap.weights.as_dict()),
            enabled=snap.enabled,
            updated_by=snap.updated_by,
            created_at=snap.created_at,
            is_fallback=snap.is_fallback,
        )


class BreakdownOut(BaseModel):
    text: float
    image: float
    location: float
    time: float


class MatchOut(_CamelModel):
    match_id: str = Field(alias="matchId")
    lost_item_id: str = Field(alias="lostItemId")
    found_item_id: str = Field(alias="foundItemId")
    similarity_score: float = Field(alias="similarityScore")
    feature_breakdown: BreakdownOut = Field(alias="featureBreakdown")
    tier: str
    status: str
    override_decision: Optional[str] = Field(None, alias="overrideDecision")
    decided_by: str = Field(alias="decidedBy")
    config_version: int = Field(alias="configVersion")
    explanation: Optional[str] = None
    generated_at: datetime = Field(alias="generatedAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def from_row(cls, row: AiMatch) -> "MatchOut":
        return cls(
            match_id=row.match_id,
            lost_item_id=row.lost_item_id,
            found_item_id=row.found_item_id,
            similarity_score=row.similarity_score,
            feature_breakdown=BreakdownOut(
                text=row.text_score, image=row.image_score, location=row.location_score, time=row.time_score
            ),
            tier=row.tier,
            status=row.status,
            override_decision=row.override_decision,
            decided_by=row.decided_by,
            config_version=row.config_version,
            explanation=row.explanation,
            generated_at=row.generated_at,
            updated_at=row.updated_at,
        )


class MatchRunOut(_CamelModel):
    item_id: str = Field(alias="itemId")
    config_version: int = Field(alias="configVersion")
    evaluated: int
    created: list[str]
    updated: list[str]
    degraded: list[str]


class QuickMatchOut(_CamelModel):
    item_id: str = Field(alias="itemId")
    score: float
    tier: str
    feature_breakdown: BreakdownOut = Field(alias="featureBreakdown")
    explanation: str


class SuggestionOut(_CamelModel):
    item_id: str = Field(alias="itemId")
    score: float


class DecisionRequest(BaseModel):
    decision: str
    reason: str


class RollbackRequest(_CamelModel):
    reason: str
    version_id: Optional[str] = Field(None, alias="versionId")


class DecisionVersionOut(_CamelModel):
    version_id: str = Field(alias="versionId")
    match_id: str = Field(alias="matchId")
    sequence: int
    action: str
    previous_state: dict = Field(alias="previousState")
    resulting_status: str = Field(alias="resultingStatus")
    actor_id: str = Field(alias="actorId")
    reason: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_row(cls, row: AiDecisionVersion) -> "DecisionVersionOut":
        return cls(
            version_id=row.version_id,
            match_id=row.match_id,
            sequence=row.sequence,
            action=row.action,
            previous_state=json.loads(row.previous_state_json),
            resulting_status=row.resulting_status,
            actor_id=row.actor_id,
            reason=row.reason,
            created_at=row.created_at,
        )


class RescoreOut(BaseModel):
    match: MatchOut
    changed: bool


class ClaimCreate(BaseModel):
    proofs: list[str] = Field(default_factory=list)


class ClaimAssessmentOut(_CamelModel):
    claim_id: str = Field(alias="claimId")
    rank: int
    combined_score: float = Field(alias="combinedScore")
    match_score: float = Field(alias="matchScore")
    proof_score: float = Field(alias="proofScore")
    confidence_tier: str = Field(alias="confidenceTier")
    status: str
    is_leading: bool = Field(alias="isLeading")
    is_suspicious: bool = Field(alias="isSuspicious")
    suspicion_reasons: list[str] = Field(alias="suspicionReasons")


class ResolutionOut(_CamelModel):
    item_id: str = Field(alias="itemId")
    conflict: bool
    leading_claim_id: Optional[str] = Field(None, alias="leadingClaimId")
    claims: list[ClaimAssessmentOut]


class ClaimOut(_CamelModel):
    claim_id: str = Field(alias="claimId")
    item_id: str = Field(alias="itemId")
    claimant_id: str = Field(alias="claimantId")
    status: str
    submitted_at: datetime = Field(alias="submittedAt")

    @classmethod
    def from_row(cls, row: Claim) -> "ClaimOut":
        return cls(
            claim_id=row.claim_id,
            item_id=row.item_id,
            claimant_id=row.claimant_id,
            status=row.status,
            submitted_at=row.submitted_at,
        )


class ClaimSubmitOut(BaseModel):
    claim: ClaimOut
    resolution: ResolutionOut
