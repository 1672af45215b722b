"""Item matching routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from campusmatch.api.deps import Actor, get_actor, get_match_engine, get_resolver, require_admin
from campusmatch.api.routes_claims import resolution_out
from campusmatch.api.schemas import (
    BreakdownOut,
    ClaimCreate,
    ClaimOut,
    ClaimSubmitOut,
    MatchOut,
    MatchRunOut,
    QuickMatchOut,
    SuggestionOut,
)
from campusmatch.config.settings import settings
from campusmatch.services.claims_resolver import ClaimsResolver
from campusmatch.services.matching import MatchDecisionEngine

router = APIRouter(prefix="/items", tags=["items"])


@router.get("/{item_id}/matches", response_model=list[MatchOut])
def list_item_matches(item_id: str, engine: MatchDecisionEngine = Depends(get_match_engine)):
    return [MatchOut.from_row(m) for m in engine.list_matches(item_id)]


@router.post("/{item_id}/match", response_model=MatchRunOut)
def run_item_matching(
    item_id: str,
    engine: MatchDecisionEngine = Depends(get_match_engine),
    actor: Actor = Depends(require_admin),
):
    run = engine.match_item(item_id)
    return MatchRunOut(
        item_id=run.item_id,
        config_version=run.config_version,
        evaluated=run.evaluated,
        created=run.created,
        updated=run.updated,
        degraded=run.degraded,
    )


@router.post("/{item_id}/quick-match", response_model=list[QuickMatchOut])
def quick_match(
    item_id: str,
    limit: int = Query(settings.quick_match_limit, ge=1, le=100),
    engine: MatchDecisionEngine = Depends(get_match_engine),
):
    return [
        QuickMatchOut(
            item_id=q.item_id,
            score=q.score,
            tier=q.tier,
            feature_breakdown=BreakdownOut(**q.breakdown.as_dict()),
            explanation=q.explanation,
        )
        for q in engine.quick_match(item_id, limit)
    ]


@router.get("/{item_id}/suggestions", response_model=list[SuggestionOut])
def keyword_suggestions(
    item_id: str,
    limit: int = Query(settings.quick_match_limit, ge=1, le=100),
    engine: MatchDecisionEngine = Depends(get_match_engine),
):
    return [SuggestionOut(item_id=i, score=s) for i, s in engine.suggest(item_id, limit)]


@router.post("/{item_id}/claims", response_model=ClaimSubmitOut)
def submit_claim(
    item_id: str,
    payload: ClaimCreate,
    resolver: ClaimsResolver = Depends(get_resolver),
    actor: Actor = Depends(get_actor),
):
    claim, result = resolver.submit_claim(item_id, actor.actor_id, payload.proofs)
    return ClaimSubmitOut(claim=ClaimOut.from_row(claim), resolution=resolution_out(result))
