"""
Competing-Claims Resolver.

Ranks the open claims on one found item and settles their state:
a lone claim stays pending; two or more all go to conflict with one leader and
heuristic suspicion flags on the rest. Final approval is an admin action elsewhere.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from campusmatch.config.settings import settings
from campusmatch.db.schema import Claim
from campusmatch.errors import ConcurrentResolutionConflict, ValidationError
from campusmatch.models.domain import Thresholds
from campusmatch.repos.claim_repo import OPEN_CLAIM_STATUSES, ClaimRepository
from campusmatch.repos.config_repo import ConfigurationRepository
from campusmatch.repos.item_repo import ItemRepository
from campusmatch.repos.match_repo import MatchRepository
from campusmatch.services.keyed_locks import KeyedLocks
from campusmatch.services.notifications import LoggingNotifier, Notifier, dispatch
from campusmatch.services.proof_scoring import KeywordProofScorer, ProofScorer

logger = logging.getLogger(__name__)

REASON_REPEAT = "repeat_suspicious_claimant"
REASON_WEAK_PROOF = "weak_proof"
REASON_TRAILS = "trails_leader"

# process-wide so every resolver instance serializes on the same item keys
RESOLUTION_LOCKS = KeyedLocks()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class ScoredClaim:
    claim_id: str
    claimant_id: str
    submitted_at: datetime
    match_score: float
    proof_score: float
    combined: float
    prior_suspicious: int = 0


@dataclass(frozen=True)
class ClaimAssessment:
    claim_id: str
    rank: int
    combined: float
    match_score: float
    proof_score: float
    confidence_tier: str
    status: str
    is_leading: bool
    is_suspicious: bool
    reasons: tuple = ()


@dataclass
class ResolutionResult:
    item_id: str
    conflict: bool
    leading_claim_id: Optional[str]
    assessments: List[ClaimAssessment] = field(default_factory=list)
    attempts: int = 1


def combined_score(match: float, proof: float, match_weight: float, proof_weight: float) -> float:
    total = match_weight + proof_weight
    if total <= 0:
        return 0.0
    return (match_weight * match + proof_weight * proof) / total


def confidence_tier(combined: float, thresholds: Thresholds) -> str:
    if combined >= thresholds.auto_approve / 100.0:
        return "full"
    if combined >= thresholds.partial_match / 100.0:
        return "partial"
    return "low"


def rank_claims(claims: Iterable[ScoredClaim]) -> List[ScoredClaim]:
    """Highest combined first; ties go to the earlier submission, then the smaller id."""
    return sorted(claims, key=lambda c: (-c.combined, c.submitted_at, c.claim_id))


def assess_claims(
    claims: Iterable[ScoredClaim],
    thresholds: Thresholds,
    min_proof_specificity: float = settings.min_proof_specificity,
    suspicion_margin: float = settings.suspicion_margin,
    history_threshold: int = settings.suspicious_history_threshold,
) -> List[ClaimAssessment]:
    """Pure ranking and flagging; the resolver persists the result."""
    ranked = rank_claims(claims)
    if not ranked:
        return []

    if len(ranked) == 1:
        only = ranked[0]
        return [
            ClaimAssessment(
                claim_id=only.claim_id,
                rank=1,
                combined=only.combined,
                match_score=only.match_score,
                proof_score=only.proof_score,
                confidence_tier=confidence_tier(only.combined, thresholds),
                status="pending",
                is_leading=False,
                is_suspicious=False,
            )
        ]

    leader = ranked[0]
    out: List[ClaimAssessment] = []
    for rank, claim in enumerate(ranked, start=1):
        reasons: List[str] = []
        if claim is not leader:
            if claim.prior_suspicious >= history_threshold:
                reasons.append(REASON_REPEAT)
            if claim.proof_score < min_proof_specificity:
                reasons.append(REASON_WEAK_PROOF)
            if leader.combined - claim.combined > suspicion_margin:
                reasons.append(REASON_TRAILS)
        out.append(
            ClaimAssessment(
                claim_id=claim.claim_id,
                rank=rank,
                combined=claim.combined,
                match_score=claim.match_score,
                proof_score=claim.proof_score,
                confidence_tier=confidence_tier(claim.combined, thresholds),
                status="conflict",
                is_leading=claim is leader,
                is_suspicious=bool(reasons),
                reasons=tuple(reasons),
            )
        )
    return out


def claim_set_fingerprint(rows: Sequence[tuple]) -> str:
    h = hashlib.sha1()
    for claim_id, proofs_json in sorted(rows):
        h.update(f"{claim_id}|{proofs_json}\n".encode("utf-8"))
    return h.hexdigest()


def _proofs(claim: Claim) -> List[str]:
    try:
        value = json.loads(claim.ownership_proofs_json or "[]")
    except json.JSONDecodeError:
        return []
    return [str(p) for p in value] if isinstance(value, list) else []


class ClaimsResolver:
    def __init__(
        self,
        session: Session,
        proof_scorer: Optional[ProofScorer] = None,
        notifier: Optional[Notifier] = None,
        locks: Optional[KeyedLocks] = None,
        max_retries: int = settings.resolution_max_retries,
    ) -> None:
        self.session = session
        self.proof_scorer = proof_scorer or KeywordProofScorer()
        self.notifier = notifier or LoggingNotifier()
        self.locks = locks or RESOLUTION_LOCKS
        self.max_retries = max(1, max_retries)

        self.claims = ClaimRepository(session)
        self.items = ItemRepository(session)
        self.matches = MatchRepository(session)
        self.configs = ConfigurationRepository(
            session,
            alert_fn=lambda violation: dispatch(self.notifier, "alert", "configuration", str(violation)),
        )

    def _open_claim_rows(self, item_id: str) -> List[tuple]:
        return list(
            self.session.execute(
                select(Claim.claim_id, Claim.ownership_proofs_json).where(
                    Claim.item_id == item_id,
                    Claim.status.in_(OPEN_CLAIM_STATUSES),
                )
            ).all()
        )

    def score_claim(self, claim: Claim, match_weight: float, proof_weight: float) -> ScoredClaim:
        proof = self.proof_scorer.score(_proofs(claim))
        match = self.matches.best_score_between(self.items.lost_item_ids_of(claim.claimant_id), claim.item_id)
        return ScoredClaim(
            claim_id=claim.claim_id,
            claimant_id=claim.claimant_id,
            submitted_at=claim.submitted_at,
            match_score=match,
            proof_score=proof,
            combined=combined_score(match, proof, match_weight, proof_weight),
            prior_suspicious=self.claims.suspicious_count_elsewhere(claim.claimant_id, claim.item_id),
        )

    def resolve(self, item_id: str, actor_id: str = "system") -> ResolutionResult:
        """
        Re-rank and settle every open claim on `item_id`.

        Uncommitted changes on the session are discarded: each attempt reads from a
        transaction opened while the item lock is held.
        """
        with self.locks.hold(item_id):
            # the snapshot must not predate the previous lock holder's commit
            self.session.rollback()
            item = self.items.get(item_id)
            if item.submission_type != "found":
                raise ValidationError(f"claims target found items; {item_id} is {item.submission_type}")

            for attempt in range(1, self.max_retries + 1):
                try:
                    result = self._resolve_once(item_id, actor_id)
                except ConcurrentResolutionConflict:
                    self.session.rollback()
                    logger.warning("claim set for %s changed mid-resolution (attempt %d)", item_id, attempt)
                    continue
                result.attempts = attempt
                dispatch(self.notifier, "claims_resolved", item_id, result.leading_claim_id, result.conflict)
                return result

        raise ConcurrentResolutionConflict(item_id)

    def _resolve_once(self, item_id: str, actor_id: str) -> ResolutionResult:
        rows = {c.claim_id: c for c in self.claims.open_for_item(item_id)}
        before = claim_set_fingerprint([(c.claim_id, c.ownership_proofs_json) for c in rows.values()])
        config = self.configs.active()

        scored = [
            self.score_claim(c, settings.claim_match_weight, settings.claim_proof_weight)
            for c in rows.values()
        ]
        assessments = assess_claims(scored, config.thresholds)

        now = utcnow()
        try:
            for a in assessments:
                row = rows[a.claim_id]
                row.proof_score = a.proof_score
                row.combined_score = a.combined
                row.confidence_tier = a.confidence_tier
                row.status = a.status
                row.rank = a.rank
                row.is_leading = a.is_leading
                row.is_suspicious = a.is_suspicious
                row.suspicion_reasons_json = json.dumps(list(a.reasons))
                if a.is_suspicious:
                    row.ever_suspicious = True
                row.assessed_at = now
            self.session.commit()
        except OperationalError as e:
            # write-write conflict: another transaction changed one of these claims
            self.session.rollback()
            raise ConcurrentResolutionConflict(item_id) from e
        except Exception:
            self.session.rollback()
            raise

        # read in a new transaction so claims committed elsewhere meanwhile are visible
        if claim_set_fingerprint(self._open_claim_rows(item_id)) != before:
            raise ConcurrentResolutionConflict(item_id)

        leading = next((a.claim_id for a in assessments if a.is_leading), None)
        conflict = len(assessments) >= 2
        logger.info(
            "resolved %d open claims on %s (conflict=%s leading=%s) by %s",
            len(assessments), item_id, conflict, leading, actor_id,
        )
        return ResolutionResult(item_id=item_id, conflict=conflict, leading_claim_id=leading, assessments=assessments)

    def submit_claim(self, item_id: str, claimant_id: str, proofs: Iterable[str]) -> tuple[Claim, ResolutionResult]:
        if not claimant_id or not claimant_id.strip():
            raise ValidationError("claimant id is required")
        item = self.items.get(item_id)
        if item.submission_type != "found":
            raise ValidationError(f"only found items can be claimed; {item_id} is {item.submission_type}")
        if item.status in ("resolved", "archived"):
            raise ValidationError(f"item {item_id} is {item.status} and no longer accepts claims")
        if any(c.claimant_id == claimant_id for c in self.claims.open_for_item(item_id)):
            raise ValidationError(f"{claimant_id} already has an open claim on {item_id}")

        claim = self.claims.add(item_id, claimant_id, list(proofs))
        logger.info("claim %s submitted on %s by %s", claim.claim_id, item_id, claimant_id)
        result = self.resolve(item_id)
        return claim, result

    def withdraw_claim(self, claim_id: str, claimant_id: Optional[str] = None) -> ResolutionResult:
        claim = self.claims.get(claim_id)
        if claimant_id is not None and claim.claimant_id != claimant_id:
            raise ValidationError(f"claim {claim_id} does not belong to {claimant_id}")
        if claim.status not in OPEN_CLAIM_STATUSES:
            raise ValidationError(f"claim {claim_id} is {claim.status} and cannot be withdrawn")
        try:
            claim.status = "withdrawn"
            claim.rank = None
            claim.is_leading = False
            claim.is_suspicious = False
            claim.suspicion_reasons_json = "[]"
            claim.resolved_at = utcnow()
            claim.resolved_by = claim.claimant_id
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("claim %s withdrawn", claim_id)
        return self.resolve(claim.item_id)
