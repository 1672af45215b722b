"""API dependencies."""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from campusmatch.db.session import get_session_factory
from campusmatch.services.claims_resolver import ClaimsResolver
from campusmatch.services.embedding_client import get_embedding_client
from campusmatch.services.feature_builder import FeatureVectorBuilder
from campusmatch.services.geo import InMemoryZoneLookup, ZoneLookup
from campusmatch.services.image_similarity import BoundedImageScorer, get_image_client
from campusmatch.services.matching import MatchDecisionEngine
from campusmatch.services.notifications import LoggingNotifier, Notifier
from campusmatch.services.proof_scoring import KeywordProofScorer, ProofScorer
from campusmatch.services.text_similarity import TextSimilarityScorer

ELEVATED_ROLES = ("admin", "delegated_admin")


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ELEVATED_ROLES


def get_db() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@lru_cache(maxsize=1)
def get_text_scorer() -> TextSimilarityScorer:
    # shared so the fitted TF-IDF model survives across requests
    return TextSimilarityScorer(embedding_client=get_embedding_client())


@lru_cache(maxsize=1)
def get_image_scorer() -> BoundedImageScorer:
    return BoundedImageScorer(get_image_client())


def get_zone_lookup() -> ZoneLookup:
    return InMemoryZoneLookup()


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return LoggingNotifier()


def get_proof_scorer() -> ProofScorer:
    return KeywordProofScorer()


def get_match_engine(
    session: Session = Depends(get_db),
    text_scorer: TextSimilarityScorer = Depends(get_text_scorer),
    image_scorer: BoundedImageScorer = Depends(get_image_scorer),
    zones: ZoneLookup = Depends(get_zone_lookup),
    notifier: Notifier = Depends(get_notifier),
) -> MatchDecisionEngine:
    builder = FeatureVectorBuilder(text_scorer, image_scorer, zones)
    return MatchDecisionEngine(session, builder, notifier)


def get_resolver(
    session: Session = Depends(get_db),
    proof_scorer: ProofScorer = Depends(get_proof_scorer),
    notifier: Notifier = Depends(get_notifier),
) -> ClaimsResolver:
    return ClaimsResolver(session, proof_scorer=proof_scorer, notifier=notifier)


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    """Identity is established upstream; the gateway forwards it in headers."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="X-Actor-Id header is required")
    return Actor(actor_id=x_actor_id.strip(), role=(x_actor_role or "user").strip().lower())


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="admin privileges required")
    return actor
