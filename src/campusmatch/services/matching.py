"""
Match Decision Engine.

Scores a submitted item against the opposite-type candidate pool, persists pairs at
or above the partial floor, and owns every later change to a match: human
decisions and overrides, rollbacks and re-scoring. Each of those writes one
AiDecisionVersion holding the pre-change state, in the same transaction.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from campusmatch.config.settings import settings
from campusmatch.db.schema import AiDecisionVersion, AiMatch, Item
from campusmatch.errors import ValidationError
from campusmatch.models.domain import ConfigSnapshot, FeatureBreakdown, ItemView, MatchState
from campusmatch.repos.config_repo import ConfigurationRepository
from campusmatch.repos.decision_repo import DecisionVersionRepository
from campusmatch.repos.item_repo import ItemRepository
from campusmatch.repos.match_repo import MatchRepository
from campusmatch.services.feature_builder import FeatureVectorBuilder, PairFeatures
from campusmatch.services.keyed_locks import KeyedTaskRunner
from campusmatch.services.notifications import LoggingNotifier, Notifier, dispatch
from campusmatch.services.scoring import TIER_BELOW_FLOOR, TIER_FULL, TIER_STATUS, ScoredPair, score_breakdown
from campusmatch.services.text_similarity import quick_text_score

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
DECISIONS = ("accepted", "rejected")
_INSERT_ATTEMPTS = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def effective_decision(row: AiMatch) -> Optional[str]:
    """accepted/rejected after overrides, or None while pending."""
    if row.status == "overridden":
        return row.override_decision
    if row.status in DECISIONS:
        return row.status
    return None


@dataclass(frozen=True)
class PairEvaluation:
    features: PairFeatures
    scored: ScoredPair
    latency_ms: float


@dataclass(frozen=True)
class QuickMatch:
    item_id: str
    score: float
    tier: str
    breakdown: FeatureBreakdown
    explanation: str


@dataclass
class MatchRunResult:
    item_id: str
    config_version: int
    evaluated: int = 0
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: dict = field(default_factory=dict)
    matches_created: int = 0


class MatchDecisionEngine:
    def __init__(
        self,
        session: Session,
        builder: FeatureVectorBuilder,
        notifier: Optional[Notifier] = None,
        workers: int = settings.scoring_workers,
        pool_limit: int = settings.candidate_pool_limit,
        same_category_only: bool = settings.candidate_same_category_only,
    ) -> None:
        self.session = session
        self.builder = builder
        self.notifier = notifier or LoggingNotifier()
        self.workers = max(1, int(workers))
        self.pool_limit = pool_limit
        self.same_category_only = same_category_only

        self.items = ItemRepository(session)
        self.matches = MatchRepository(session)
        self.decisions = DecisionVersionRepository(session)
        self.configs = ConfigurationRepository(
            session,
            alert_fn=lambda violation: dispatch(self.notifier, "alert", "configuration", str(violation)),
        )

    # scoring

    def active_config(self) -> ConfigSnapshot:
        return self.configs.active()

    def refresh_text_model(self) -> bool:
        return self.builder.text_scorer.refresh(self.items.corpus_descriptions())

    def score_pair(self, a: ItemView, b: ItemView, config: Optional[ConfigSnapshot] = None) -> PairEvaluation:
        """Score one pair. Pure: no reads, no writes."""
        config = config or self.active_config()
        t0 = time.perf_counter()
        features = self.builder.build(a, b)
        scored = score_breakdown(features.breakdown, config.weights, config.thresholds, config.version)
        return PairEvaluation(features=features, scored=scored, latency_ms=(time.perf_counter() - t0) * 1000.0)

    def _evaluate(self, subject: ItemView, candidates: List[ItemView], config: ConfigSnapshot) -> List[PairEvaluation]:
        def _one(candidate: ItemView) -> PairEvaluation:
            return self.score_pair(subject, candidate, config)

        if self.workers == 1 or len(candidates) <= 1:
            results = [_one(c) for c in candidates]
        else:
            with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="pair-score") as pool:
                results = list(pool.map(_one, candidates))

        results.sort(key=lambda e: (-e.scored.score, e.features.lost_item_id, e.features.found_item_id))
        return results

    def _candidate_views(self, item: Item) -> List[ItemView]:
        rows = self.items.candidates_for(item, self.pool_limit, self.same_category_only)
        return [ItemView.from_row(r) for r in rows]

    # matching runs

    def match_item(self, item_id: str) -> MatchRunResult:
        """
        Score `item_id` against the candidate pool and persist pairs at or above the
        partial floor. Existing pairs are re-scored in place.
        """
        for attempt in range(1, _INSERT_ATTEMPTS + 1):
            try:
                return self._match_item_once(item_id)
            except IntegrityError:
                # another writer inserted one of our pairs first
                self.session.rollback()
                if attempt == _INSERT_ATTEMPTS:
                    raise
                logger.warning("pair insert collided for item %s, retrying as update", item_id)
        raise RuntimeError("unreachable")

    def _match_item_once(self, item_id: str) -> MatchRunResult:
        item = self.items.get(item_id)
        if item.status != "submitted":
            raise ValidationError(f"item {item_id} is {item.status}; only submitted items are matched")

        config = self.active_config()
        self.refresh_text_model()
        subject = ItemView.from_row(item)
        evaluations = self._evaluate(subject, self._candidate_views(item), config)

        result = MatchRunResult(item_id=item_id, config_version=config.version, evaluated=len(evaluations))
        new_full: List[AiMatch] = []
        try:
            for ev in evaluations:
                if ev.features.degraded:
                    result.degraded.extend(f"{ev.features.found_item_id}:{s}" for s in ev.features.degraded)
                existing = self.matches.find_pair(ev.features.lost_item_id, ev.features.found_item_id)
                if existing is not None:
                    if self._apply_rescore(existing, ev, SYSTEM_ACTOR, "re-evaluated on new matching run"):
                        result.updated.append(existing.match_id)
                    continue
                if ev.scored.tier == TIER_BELOW_FLOOR:
                    continue
                row = self._insert_match(ev)
                result.created.append(row.match_id)
                if row.tier == TIER_FULL:
                    new_full.append(row)

            self.items.mark_checked(item)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "item %s matched under config v%d: evaluated=%d created=%d updated=%d",
            item_id, config.version, result.evaluated, len(result.created), len(result.updated),
        )
        for row in new_full:
            dispatch(self.notifier, "match_found", row.match_id, row.lost_item_id, row.found_item_id, row.similarity_score)
        return result

    def _insert_match(self, ev: PairEvaluation) -> AiMatch:
        b = ev.scored.breakdown
        status = TIER_STATUS[ev.scored.tier]
        row = AiMatch(
            lost_item_id=ev.features.lost_item_id,
            found_item_id=ev.features.found_item_id,
            similarity_score=ev.scored.score,
            text_score=b.text,
            image_score=b.image,
            location_score=b.location,
            time_score=b.time,
            tier=ev.scored.tier,
            status=status,
            decided_by=SYSTEM_ACTOR,
            config_version=ev.scored.config_version,
            scoring_latency_ms=ev.latency_ms,
            explanation=ev.features.explanation,
        )
        self.session.add(row)
        self.session.flush()
        if status == "accepted":
            self._mark_items_matched(row)
        return row

    def _mark_items_matched(self, row: AiMatch) -> None:
        for item_id in (row.lost_item_id, row.found_item_id):
            item = self.items.find(item_id)
            if item is not None and item.status == "submitted":
                self.items.set_status(item, "matched")

    def _sync_item_status(self, row: AiMatch) -> None:
        """Matched while this pair is accepted; back to submitted once no accepted match holds the item."""
        if effective_decision(row) == "accepted":
            self._mark_items_matched(row)
            return
        for item_id in (row.lost_item_id, row.found_item_id):
            item = self.items.find(item_id)
            if item is None or item.status != "matched":
                continue
            held = any(
                m.match_id != row.match_id and effective_decision(m) == "accepted"
                for m in self.matches.for_item(item_id)
            )
            if not held:
                self.items.set_status(item, "submitted")

    def quick_match(self, item_id: str, limit: int = settings.quick_match_limit) -> List[QuickMatch]:
        """Transient ranked candidates, below-floor pairs included. Writes nothing."""
        item = self.items.get(item_id)
        config = self.active_config()
        self.refresh_text_model()
        subject = ItemView.from_row(item)
        evaluations = self._evaluate(subject, self._candidate_views(item), config)
        out: List[QuickMatch] = []
        for ev in evaluations[: max(0, limit)]:
            other = ev.features.found_item_id if ev.features.lost_item_id == item_id else ev.features.lost_item_id
            out.append(
                QuickMatch(
                    item_id=other,
                    score=ev.scored.score,
                    tier=ev.scored.tier,
                    breakdown=ev.scored.breakdown,
                    explanation=ev.features.explanation,
                )
            )
        return out

    def suggest(self, item_id: str, limit: int = settings.quick_match_limit) -> List[tuple[str, float]]:
        """Keyword-overlap suggestions; no model, no collaborators."""
        item = self.items.get(item_id)
        scored = [
            (c.item_id, quick_text_score(item.description, c.description))
            for c in self.items.candidates_for(item, self.pool_limit, self.same_category_only)
        ]
        scored = [s for s in scored if s[1] > 0]
        scored.sort(key=lambda s: (-s[1], s[0]))
        return scored[: max(0, limit)]

    def list_matches(self, item_id: str) -> List[AiMatch]:
        self.items.get(item_id)
        return self.matches.for_item(item_id)

    # decisions

    def decide(self, match_id: str, decision: str, actor_id: str, reason: str) -> AiMatch:
        """
        Confirm a pending match or override a decided one.

        Pending -> accepted/rejected. Anything else -> overridden, with the human
        outcome kept in override_decision.
        """
        if decision not in DECISIONS:
            raise ValidationError(f"decision must be one of {DECISIONS}, got {decision!r}")
        if not actor_id or not actor_id.strip():
            raise ValidationError("actor id is required")
        if not reason or not reason.strip():
            raise ValidationError("a reason is required for every decision")

        row = self.matches.get(match_id)
        try:
            previous = MatchState.capture(row)
            if row.status == "pending":
                action = "decision"
                row.status = decision
                row.override_decision = None
            else:
                action = "override"
                row.status = "overridden"
                row.override_decision = decision
            row.decided_by = actor_id
            row.updated_at = utcnow()

            self.decisions.append(match_id, action, previous, row.status, actor_id, reason.strip())
            self._sync_item_status(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("match %s %s -> %s by %s", match_id, action, decision, actor_id)
        return row

    def rollback(self, match_id: str, actor_id: str, reason: str, version_id: Optional[str] = None) -> AiMatch:
        """Restore the state captured by a decision version (the latest by default)."""
        if not actor_id or not actor_id.strip():
            raise ValidationError("actor id is required")
        if not reason or not reason.strip():
            raise ValidationError("a reason is required for a rollback")

        row = self.matches.get(match_id)
        if version_id is not None:
            target = self.decisions.get(version_id)
            if target.match_id != match_id:
                raise ValidationError(f"decision version {version_id} does not belong to match {match_id}")
        else:
            target = self.decisions.latest(match_id)
            if target is None:
                raise ValidationError(f"match {match_id} has no decision history to roll back")

        try:
            previous = MatchState.capture(row)
            MatchState.from_json(target.previous_state_json).apply_to(row)
            row.updated_at = utcnow()
            self.decisions.append(match_id, "rollback", previous, row.status, actor_id, reason.strip())
            self._sync_item_status(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("match %s rolled back to version %s by %s", match_id, target.version_id, actor_id)
        return row

    def history(self, match_id: str) -> List[AiDecisionVersion]:
        self.matches.get(match_id)
        return self.decisions.history(match_id)

    # re-scoring

    def _apply_rescore(self, row: AiMatch, ev: PairEvaluation, actor_id: str, reason: str) -> bool:
        """Update `row` from a fresh evaluation; append a version only if anything changed."""
        previous = MatchState.capture(row)
        human_decided = row.decided_by != SYSTEM_ACTOR
        target = MatchState(
            similarity_score=ev.scored.score,
            breakdown=ev.scored.breakdown.as_dict(),
            tier=ev.scored.tier,
            status=previous.status if human_decided else TIER_STATUS[ev.scored.tier],
            override_decision=previous.override_decision if human_decided else None,
            decided_by=previous.decided_by,
            config_version=ev.scored.config_version,
        )
        if _same_state(previous, target):
            return False

        self.decisions.append(row.match_id, "rescore", previous, target.status, actor_id, reason)
        target.apply_to(row)
        row.scoring_latency_ms = ev.latency_ms
        row.explanation = ev.features.explanation
        row.updated_at = utcnow()
        self._sync_item_status(row)
        return True

    def rescore_match(self, match_id: str, actor_id: str = SYSTEM_ACTOR, reason: str = "re-scored") -> tuple[AiMatch, bool]:
        """Recompute under the enabled configuration. Idempotent when nothing changed."""
        row = self.matches.get(match_id)
        lost = ItemView.from_row(self.items.get(row.lost_item_id))
        found = ItemView.from_row(self.items.get(row.found_item_id))
        config = self.active_config()
        self.refresh_text_model()
        ev = self.score_pair(lost, found, config)
        try:
            changed = self._apply_rescore(row, ev, actor_id, reason)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if changed:
            logger.info("match %s re-scored under config v%d: %.4f (%s)", match_id, config.version, row.similarity_score, row.tier)
        return row, changed

    def rescore_all(self, actor_id: str = SYSTEM_ACTOR, reason: str = "re-scored") -> dict:
        counts = {"changed": 0, "unchanged": 0}
        for match_id in [m.match_id for m in self.matches.all()]:
            _, changed = self.rescore_match(match_id, actor_id, reason)
            counts["changed" if changed else "unchanged"] += 1
        return counts


def _same_state(a: MatchState, b: MatchState) -> bool:
    if a.tier != b.tier or a.status != b.status or a.override_decision != b.override_decision:
        return False
    if a.config_version != b.config_version:
        return False
    if not math.isclose(a.similarity_score, b.similarity_score, abs_tol=1e-9):
        return False
    return all(math.isclose(a.breakdown[k], b.breakdown[k], abs_tol=1e-9) for k in b.breakdown)


def batch_process(
    session_factory: Callable[[], Session],
    engine_factory: Callable[[Session], MatchDecisionEngine],
    limit: int = settings.batch_limit,
    workers: int = settings.scoring_workers,
) -> BatchResult:
    """
    Match every unchecked submitted item, one task per item id.

    Each task opens its own session; tasks on the same item never overlap.
    """
    with session_factory() as session:
        item_ids = [i.item_id for i in ItemRepository(session).unchecked(limit)]

    result = BatchResult()
    if not item_ids:
        return result

    def _task(item_id: str) -> MatchRunResult:
        with session_factory() as task_session:
            return engine_factory(task_session).match_item(item_id)

    with KeyedTaskRunner(max_workers=max(1, workers)) as runner:
        futures = {item_id: runner.submit(item_id, _task, item_id) for item_id in item_ids}

    for item_id, future in futures.items():
        try:
            run = future.result()
        except ValidationError as e:
            # matched by an earlier task in this batch
            logger.info("batch skipped item %s: %s", item_id, e)
            result.skipped.append(item_id)
            continue
        except Exception as e:
            logger.error("batch matching failed for item %s: %s", item_id, e)
            result.failed[item_id] = f"{type(e).__name__}: {e}"
            continue
        result.processed.append(item_id)
        result.matches_created += len(run.created)

    logger.info("batch processed %d items (%d failed)", len(result.processed), len(result.failed))
    return result
