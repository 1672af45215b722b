"""Match decision routes (admin only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from campusmatch.api.deps import Actor, get_match_engine, require_admin
from campusmatch.api.schemas import DecisionRequest, DecisionVersionOut, MatchOut, RescoreOut, RollbackRequest
from campusmatch.services.matching import MatchDecisionEngine

router = APIRouter(prefix="/matches", tags=["matches"])


@router.put("/{match_id}/decision", response_model=MatchOut)
def decide_match(
    match_id: str,
    payload: DecisionRequest,
    engine: MatchDecisionEngine = Depends(get_match_engine),
    actor: Actor = Depends(require_admin),
):
    return MatchOut.from_row(engine.decide(match_id, payload.decision, actor.actor_id, payload.reason))


@router.post("/{match_id}/rollback", response_model=MatchOut)
def rollback_match(
    match_id: str,
    payload: RollbackRequest,
    engine: MatchDecisionEngine = Depends(get_match_engine),
    actor: Actor = Depends(require_admin),
):
    return MatchOut.from_row(engine.rollback(match_id, actor.actor_id, payload.reason, payload.version_id))


@router.get("/{match_id}/history", response_model=list[DecisionVersionOut])
def match_history(
    match_id: str,
    engine: MatchDecisionEngine = Depends(get_match_engine),
    actor: Actor = Depends(require_admin),
):
    return [DecisionVersionOut.from_row(v) for v in engine.history(match_id)]


@router.post("/{match_id}/rescore", response_model=RescoreOut)
def rescore_match(
    match_id: str,
    engine: MatchDecisionEngine = Depends(get_match_engine),
    actor: Actor = Depends(require_admin),
):
    row, changed = engine.rescore_match(match_id, actor.actor_id, "re-scored on request")
    return RescoreOut(match=MatchOut.from_row(row), changed=changed)
