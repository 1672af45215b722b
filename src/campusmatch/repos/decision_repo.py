"""AiDecisionVersion Repository (append-only)."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from campusmatch.db.schema import AiDecisionVersion
from campusmatch.errors import NotFoundError
from campusmatch.models.domain import MatchState

ACTIONS = ("decision", "override", "rollback", "rescore")


class DecisionVersionRepository:
    def __init__(self, session: Session):
        self.session = session

    def next_sequence(self, match_id: str) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.max(AiDecisionVersion.sequence), 0)).where(
                    AiDecisionVersion.match_id == match_id
                )
            ).scalar_one()
        ) + 1

    def append(
        self,
        match_id: str,
        action: str,
        previous_state: MatchState,
        resulting_status: str,
        actor_id: str,
        reason: Optional[str],
    ) -> AiDecisionVersion:
        """Record the pre-change state of a match. The caller commits."""
        if action not in ACTIONS:
            raise ValueError(f"unknown decision action: {action}")
        row = AiDecisionVersion(
            match_id=match_id,
            sequence=self.next_sequence(match_id),
            action=action,
            previous_state_json=previous_state.to_json(),
            resulting_status=resulting_status,
            actor_id=actor_id,
            reason=reason,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def history(self, match_id: str) -> List[AiDecisionVersion]:
        return list(
            self.session.execute(
                select(AiDecisionVersion)
                .where(AiDecisionVersion.match_id == match_id)
                .order_by(AiDecisionVersion.sequence)
            ).scalars()
        )

    def latest(self, match_id: str) -> Optional[AiDecisionVersion]:
        return self.session.execute(
            select(AiDecisionVersion)
            .where(AiDecisionVersion.match_id == match_id)
            .order_by(AiDecisionVersion.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get(self, version_id: str) -> AiDecisionVersion:
        row = self.session.get(AiDecisionVersion, version_id)
        if row is None:
            raise NotFoundError("decision version", version_id)
        return row

    def count(self, match_id: str) -> int:
        return int(
            self.session.execute(
                select(func.count())
                .select_from(AiDecisionVersion)
                .where(AiDecisionVersion.match_id == match_id)
            ).scalar_one()
        )
