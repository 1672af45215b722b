"""AI configuration routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campusmatch.api.deps import Actor, get_db, get_notifier, require_admin
from campusmatch.api.schemas import AiConfigOut, AiConfigUpdate
from campusmatch.models.domain import Thresholds, Weights
from campusmatch.repos.config_repo import ConfigurationRepository
from campusmatch.services.notifications import Notifier, dispatch

router = APIRouter(prefix="/ai-config", tags=["ai-config"])


def _repo(session: Session, notifier: Notifier) -> ConfigurationRepository:
    return ConfigurationRepository(
        session,
        alert_fn=lambda violation: dispatch(notifier, "alert", "configuration", str(violation)),
    )


@router.get("", response_model=AiConfigOut)
def get_ai_config(session: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return AiConfigOut.from_snapshot(_repo(session, notifier).active())


@router.put("", response_model=AiConfigOut)
def put_ai_config(
    payload: AiConfigUpdate,
    session: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    actor: Actor = Depends(require_admin),
):
    snap = _repo(session, notifier).create_configuration(
        Thresholds(auto_approve=payload.thresholds.auto_approve, partial_match=payload.thresholds.partial_match),
        Weights(**payload.weights.model_dump()),
        updated_by=actor.actor_id,
    )
    return AiConfigOut.from_snapshot(snap)


@router.get("/versions", response_model=list[AiConfigOut])
def list_ai_config_versions(session: Session = Depends(get_db), actor: Actor = Depends(require_admin)):
    return [AiConfigOut.from_snapshot(s) for s in ConfigurationRepository(session).list_versions()]
