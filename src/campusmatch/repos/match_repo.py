"""AiMatch Repository."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from campusmatch.db.schema import AiMatch
from campusmatch.errors import NotFoundError


class MatchRepository:
    """Repository for ai_matches. Never commits; the decision engine owns the transaction."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, match_id: str) -> AiMatch:
        row = self.session.get(AiMatch, match_id)
        if row is None:
            raise NotFoundError("match", match_id)
        return row

    def find_pair(self, lost_item_id: str, found_item_id: str) -> Optional[AiMatch]:
        return self.session.execute(
            select(AiMatch).where(
                AiMatch.lost_item_id == lost_item_id,
                AiMatch.found_item_id == found_item_id,
            )
        ).scalar_one_or_none()

    def for_item(self, item_id: str) -> List[AiMatch]:
        return list(
            self.session.execute(
                select(AiMatch)
                .where(or_(AiMatch.lost_item_id == item_id, AiMatch.found_item_id == item_id))
                .order_by(AiMatch.similarity_score.desc(), AiMatch.match_id)
            ).scalars()
        )

    def all(self) -> List[AiMatch]:
        return list(self.session.execute(select(AiMatch).order_by(AiMatch.generated_at, AiMatch.match_id)).scalars())

    def in_window(self, start: datetime, end: datetime) -> List[AiMatch]:
        return list(
            self.session.execute(
                select(AiMatch)
                .where(AiMatch.generated_at >= start, AiMatch.generated_at <= end)
                .order_by(AiMatch.generated_at, AiMatch.match_id)
            ).scalars()
        )

    def best_score_between(self, lost_item_ids: Iterable[str], found_item_id: str) -> float:
        """Highest non-rejected similarity between any of the lost items and the found item."""
        ids = list(lost_item_ids)
        if not ids:
            return 0.0
        best = self.session.execute(
            select(func.max(AiMatch.similarity_score)).where(
                AiMatch.lost_item_id.in_(ids),
                AiMatch.found_item_id == found_item_id,
                AiMatch.status != "rejected",
            )
        ).scalar_one_or_none()
        return float(best) if best is not None else 0.0
