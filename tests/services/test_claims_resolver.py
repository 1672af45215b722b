"""Tests for the competing-claims resolver."""

import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from campusmatch.db.engine import build_engine
from campusmatch.db.init_db import init_db
from campusmatch.db.schema import AiMatch, Claim
from campusmatch.errors import ConcurrentResolutionConflict, ValidationError
from campusmatch.models.domain import Thresholds
from campusmatch.services.claims_resolver import (
    REASON_REPEAT,
    REASON_TRAILS,
    REASON_WEAK_PROOF,
    ClaimsResolver,
    ScoredClaim,
    assess_claims,
    rank_claims,
)
from campusmatch.repos.claim_repo import ClaimRepository
from campusmatch.services.keyed_locks import KeyedLocks
from campusmatch.services.notifications import RecordingNotifier

from conftest import add_item, set_config

T = datetime(2026, 4, 1, 9, 0, 0)
STRONG = [
    "Engraved initials JK inside the cover, serial number on the receipt I still have",
    "There is a dent near the zipper and a university sticker on the back",
]
THRESHOLDS = Thresholds(auto_approve=85, partial_match=50)


def _scored(claim_id, combined, minutes, prior=0, proof=0.5):
    return ScoredClaim(
        claim_id=claim_id,
        claimant_id=f"user-{claim_id}",
        submitted_at=T + timedelta(minutes=minutes),
        match_score=combined,
        proof_score=proof,
        combined=combined,
        prior_suspicious=prior,
    )


def test_ranking_ties_break_on_submission_time():
    # ids chosen so id order disagrees with time order
    claims = [_scored("a0", 0.4, 3), _scored("c1", 0.9, 1), _scored("a2", 0.4, 2)]
    ranked = rank_claims(claims)
    assert [c.claim_id for c in ranked] == ["c1", "a2", "a0"]

    assessed = assess_claims(claims, THRESHOLDS)
    assert assessed[0].claim_id == "c1" and assessed[0].is_leading
    assert [a.rank for a in assessed] == [1, 2, 3]
    assert all(a.status == "conflict" for a in assessed)


def test_single_claim_is_never_in_conflict():
    (only,) = assess_claims([_scored("c1", 0.99, 0, prior=5, proof=0.0)], THRESHOLDS)
    assert only.status == "pending"
    assert only.is_leading is False
    assert only.is_suspicious is False
    assert only.confidence_tier == "full"


def test_suspicion_reasons():
    claims = [
        _scored("lead", 0.9, 0, proof=0.8),
        _scored("close", 0.8, 1, proof=0.8),
        _scored("weak", 0.75, 2, proof=0.1),
        _scored("repeat", 0.85, 3, prior=2, proof=0.8),
        _scored("far", 0.5, 4, proof=0.8),
    ]
    flags = {a.claim_id: a.reasons for a in assess_claims(claims, THRESHOLDS)}
    assert flags["lead"] == ()
    assert flags["close"] == ()
    assert flags["weak"] == (REASON_WEAK_PROOF,)
    assert flags["repeat"] == (REASON_REPEAT,)
    assert flags["far"] == (REASON_TRAILS,)


@pytest.fixture
def contested(session):
    set_config(session)
    found = add_item(session, "found", "Brown leather wallet", category="wallet")
    alice_lost = add_item(session, "lost", "Brown leather wallet", category="wallet", submitter_id="alice")
    session.add(
        AiMatch(
            lost_item_id=alice_lost.item_id,
            found_item_id=found.item_id,
            similarity_score=0.9,
            text_score=1.0,
            image_score=0.8,
            location_score=1.0,
            time_score=1.0,
            tier="full",
            status="pending",
            config_version=1,
        )
    )
    session.commit()
    return found


def test_lone_claim_stays_pending(session, contested):
    resolver = ClaimsResolver(session, notifier=RecordingNotifier())
    claim, result = resolver.submit_claim(contested.item_id, "alice", STRONG)

    assert result.conflict is False
    row = session.get(Claim, claim.claim_id)
    assert row.status == "pending"
    assert row.is_leading is False
    assert row.combined_score > 0.8


def test_competing_claims_enter_conflict_with_leader_and_flags(session, contested):
    notifier = RecordingNotifier()
    resolver = ClaimsResolver(session, notifier=notifier)
    alice, _ = resolver.submit_claim(contested.item_id, "alice", STRONG)
    bob, result = resolver.submit_claim(contested.item_id, "bob", ["mine"])

    assert result.conflict is True
    assert result.leading_claim_id == alice.claim_id
    a, b = session.get(Claim, alice.claim_id), session.get(Claim, bob.claim_id)
    assert (a.status, b.status) == ("conflict", "conflict")
    assert a.is_leading and not a.is_suspicious
    assert b.is_suspicious
    assert set(json.loads(b.suspicion_reasons_json)) == {REASON_WEAK_PROOF, REASON_TRAILS}
    assert notifier.events[-1] == ("claims_resolved", contested.item_id, alice.claim_id, True)


def test_resolution_is_deterministic(session, contested):
    resolver = ClaimsResolver(session)
    resolver.submit_claim(contested.item_id, "alice", STRONG)
    resolver.submit_claim(contested.item_id, "bob", ["mine"])
    resolver.submit_claim(contested.item_id, "carol", ["black wallet, has a gift card inside"])

    first = resolver.resolve(contested.item_id)
    second = resolver.resolve(contested.item_id)
    assert first.assessments == second.assessments


def test_withdrawal_returns_remaining_claim_to_pending(session, contested):
    resolver = ClaimsResolver(session)
    alice, _ = resolver.submit_claim(contested.item_id, "alice", STRONG)
    bob, _ = resolver.submit_claim(contested.item_id, "bob", ["mine"])

    result = resolver.withdraw_claim(bob.claim_id, "bob")

    assert result.conflict is False
    assert session.get(Claim, bob.claim_id).status == "withdrawn"
    a = session.get(Claim, alice.claim_id)
    assert a.status == "pending"
    assert a.is_leading is False and a.is_suspicious is False


def test_claim_validation(session, contested):
    resolver = ClaimsResolver(session)
    claim, _ = resolver.submit_claim(contested.item_id, "alice", STRONG)
    with pytest.raises(ValidationError):
        resolver.submit_claim(contested.item_id, "alice", ["again"])
    lost = add_item(session, "lost", "Red umbrella")
    with pytest.raises(ValidationError):
        resolver.submit_claim(lost.item_id, "dave", STRONG)
    with pytest.raises(ValidationError):
        resolver.withdraw_claim(claim.claim_id, "mallory")


def test_changed_claim_set_is_retried(session, contested, monkeypatch):
    resolver = ClaimsResolver(session)
    resolver.submit_claim(contested.item_id, "alice", STRONG)

    real = resolver._open_claim_rows
    calls = {"n": 0}

    def flaky(item_id):
        calls["n"] += 1
        rows = real(item_id)
        if calls["n"] == 1:
            rows = rows + [("ghost", "[]")]
        return rows

    monkeypatch.setattr(resolver, "_open_claim_rows", flaky)
    result = resolver.resolve(contested.item_id)
    assert result.attempts == 2


def test_conflict_raised_when_retries_exhausted(session, contested, monkeypatch):
    resolver = ClaimsResolver(session, max_retries=3)
    resolver.submit_claim(contested.item_id, "alice", STRONG)

    real = resolver._open_claim_rows
    calls = {"n": 0}

    def always_changing(item_id):
        calls["n"] += 1
        return real(item_id) + [(f"ghost-{calls['n']}", "[]")]

    monkeypatch.setattr(resolver, "_open_claim_rows", always_changing)
    with pytest.raises(ConcurrentResolutionConflict):
        resolver.resolve(contested.item_id)
    assert calls["n"] == 3


def _contest(session):
    set_config(session)
    found = add_item(session, "found", "Brown leather wallet", category="wallet")
    alice_lost = add_item(session, "lost", "Brown leather wallet", category="wallet", submitter_id="alice")
    session.add(
        AiMatch(
            lost_item_id=alice_lost.item_id,
            found_item_id=found.item_id,
            similarity_score=0.9,
            text_score=1.0,
            image_score=0.8,
            location_score=1.0,
            time_score=1.0,
            tier="full",
            status="pending",
            config_version=1,
        )
    )
    session.commit()
    return found.item_id


def test_claim_committed_by_another_session_mid_resolution(tmp_path):
    engine = build_engine(f"duckdb:///{tmp_path / 'claims.duckdb'}")
    init_db(engine)
    factory = sessionmaker(bind=engine)
    a, b = factory(), factory()
    try:
        item_id = _contest(a)
        claims = ClaimRepository(a)
        claims.add(item_id, "alice", STRONG)
        claims.add(item_id, "bob", ["mine"])

        resolver = ClaimsResolver(a, locks=KeyedLocks())
        real = resolver.score_claim
        calls = {"n": 0}

        def score_while_carol_claims(claim, match_weight, proof_weight):
            calls["n"] += 1
            if calls["n"] == 1:
                ClaimRepository(b).add(item_id, "carol", ["black wallet, has a gift card inside"])
            return real(claim, match_weight, proof_weight)

        resolver.score_claim = score_while_carol_claims
        result = resolver.resolve(item_id)

        assert result.attempts == 2
        assert len(result.assessments) == 3
        assert {r.status for r in ClaimRepository(b).open_for_item(item_id)} == {"conflict"}
    finally:
        a.close()
        b.close()
        engine.dispose()


def test_withdrawn_flagged_claims_still_count_as_history(session, contested):
    resolver = ClaimsResolver(session)
    flagged = []
    for _ in range(2):
        found = add_item(session, "found", "Brown leather wallet", category="wallet")
        resolver.submit_claim(found.item_id, "alice", STRONG)
        claim, _ = resolver.submit_claim(found.item_id, "mallory", ["mine"])
        assert session.get(Claim, claim.claim_id).is_suspicious
        flagged.append(claim.claim_id)

    for claim_id in flagged:
        resolver.withdraw_claim(claim_id, "mallory")
        row = session.get(Claim, claim_id)
        assert row.is_suspicious is False
        assert row.ever_suspicious is True

    resolver.submit_claim(contested.item_id, "alice", STRONG)
    claim, _ = resolver.submit_claim(contested.item_id, "mallory", ["mine"])
    row = session.get(Claim, claim.claim_id)
    assert REASON_REPEAT in json.loads(row.suspicion_reasons_json)
