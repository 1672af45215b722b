"""Analytics routes (admin only)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campusmatch.api.deps import Actor, get_db, require_admin
from campusmatch.services.analytics import AnalyticsAggregator

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/matching")
def matching_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> dict:
    return AnalyticsAggregator(session).matching_report(start, end)


@router.get("/claims")
def claims_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> dict:
    return AnalyticsAggregator(session).claims_report(start, end)
