"""Competing-claims routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from campusmatch.api.deps import Actor, get_actor, get_resolver, require_admin
from campusmatch.api.schemas import ClaimAssessmentOut, ResolutionOut
from campusmatch.services.claims_resolver import ClaimsResolver, ResolutionResult

router = APIRouter(prefix="/claims", tags=["claims"])


def resolution_out(result: ResolutionResult) -> ResolutionOut:
    return ResolutionOut(
        item_id=result.item_id,
        conflict=result.conflict,
        leading_claim_id=result.leading_claim_id,
        claims=[
            ClaimAssessmentOut(
                claim_id=a.claim_id,
                rank=a.rank,
                combined_score=a.combined,
                match_score=a.match_score,
                proof_score=a.proof_score,
                confidence_tier=a.confidence_tier,
                status=a.status,
                is_leading=a.is_leading,
                is_suspicious=a.is_suspicious,
                suspicion_reasons=list(a.reasons),
            )
            for a in result.assessments
        ],
    )


@router.post("/{item_id}/resolve", response_model=ResolutionOut)
def resolve_claims(
    item_id: str,
    resolver: ClaimsResolver = Depends(get_resolver),
    actor: Actor = Depends(require_admin),
):
    return resolution_out(resolver.resolve(item_id, actor.actor_id))


@router.post("/{claim_id}/withdraw", response_model=ResolutionOut)
def withdraw_claim(
    claim_id: str,
    resolver: ClaimsResolver = Depends(get_resolver),
    actor: Actor = Depends(get_actor),
):
    # admins may withdraw on a claimant's behalf
    claimant = None if actor.is_admin else actor.actor_id
    return resolution_out(resolver.withdraw_claim(claim_id, claimant))
