"""Claim Repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campusmatch.db.schema import Claim
from campusmatch.errors import NotFoundError

OPEN_CLAIM_STATUSES = ("pending", "conflict")


class ClaimRepository:
    """Repository for claims table operations."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        item_id: str,
        claimant_id: str,
        proofs: Iterable[str],
        submitted_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> Claim:
        row = Claim(
            item_id=item_id,
            claimant_id=claimant_id,
            ownership_proofs_json=json.dumps([str(p) for p in proofs]),
        )
        if submitted_at is not None:
            row.submitted_at = submitted_at
        self.session.add(row)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return row

    def get(self, claim_id: str) -> Claim:
        row = self.session.get(Claim, claim_id)
        if row is None:
            raise NotFoundError("claim", claim_id)
        return row

    def open_for_item(self, item_id: str) -> List[Claim]:
        return list(
            self.session.execute(
                select(Claim)
                .where(Claim.item_id == item_id, Claim.status.in_(OPEN_CLAIM_STATUSES))
                .order_by(Claim.submitted_at, Claim.claim_id)
            ).scalars()
        )

    def for_item(self, item_id: str) -> List[Claim]:
        return list(
            self.session.execute(
                select(Claim).where(Claim.item_id == item_id).order_by(Claim.rank, Claim.submitted_at, Claim.claim_id)
            ).scalars()
        )

    def suspicious_count_elsewhere(self, claimant_id: str, item_id: str) -> int:
        """Claims by this claimant on other items that were ever flagged, withdrawn ones included."""
        return int(
            self.session.execute(
                select(func.count())
                .select_from(Claim)
                .where(
                    Claim.claimant_id == claimant_id,
                    Claim.item_id != item_id,
                    Claim.ever_suspicious.is_(True),
                )
            ).scalar_one()
        )

    def in_window(self, start: datetime, end: datetime) -> List[Claim]:
        return list(
            self.session.execute(
                select(Claim)
                .where(Claim.submitted_at >= start, Claim.submitted_at <= end)
                .order_by(Claim.submitted_at, Claim.claim_id)
            ).scalars()
        )
