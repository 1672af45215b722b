"""Tests for the match decision engine."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from campusmatch.db.engine import build_engine
from campusmatch.db.init_db import init_db
from campusmatch.db.schema import AiMatch, Item
from campusmatch.errors import NotFoundError, ValidationError
from campusmatch.models.domain import FeatureBreakdown, ItemView, MatchState
from campusmatch.repos.decision_repo import DecisionVersionRepository
from campusmatch.repos.item_repo import ItemRepository
from campusmatch.services.matching import MatchDecisionEngine, batch_process
from campusmatch.services.notifications import RecordingNotifier
from campusmatch.services.scoring import aggregate

from conftest import T0, add_item, set_config

WALLET = "Black leather wallet with student ID card"
BOTTLE = "Blue metal water bottle with stickers"


@pytest.fixture
def scene(session):
    lost = add_item(session, "lost", WALLET, color="black", material="leather")
    found = add_item(session, "found", WALLET, color="black", material="leather",
                     lost_or_found_at=T0 + timedelta(hours=2))
    far = add_item(session, "found", BOTTLE, category="bottle", color="blue",
                   latitude=40.1, longitude=-75.0)
    return lost, found, far


def _match_count(session):
    return session.execute(select(func.count()).select_from(AiMatch)).scalar_one()


def test_partial_match_persisted_and_below_floor_skipped(session, builder, scene):
    lost, found, far = scene
    set_config(session)  # image weight 35 with no image signal -> 0.65

    run = MatchDecisionEngine(session, builder, workers=1).match_item(lost.item_id)

    assert run.evaluated == 2
    assert len(run.created) == 1
    row = session.get(AiMatch, run.created[0])
    assert (row.lost_item_id, row.found_item_id) == (lost.item_id, found.item_id)
    assert row.tier == "partial"
    assert row.status == "pending"
    assert row.similarity_score == pytest.approx(0.65)
    assert row.config_version == 1
    assert session.get(Item, lost.item_id).similarity_checked is True
    assert session.get(Item, lost.item_id).status == "submitted"


def test_full_match_accepts_and_notifies(session, builder, scene):
    lost, found, _ = scene
    set_config(session, image=0.0)
    notifier = RecordingNotifier()

    run = MatchDecisionEngine(session, builder, notifier=notifier, workers=1).match_item(lost.item_id)

    row = session.get(AiMatch, run.created[0])
    assert row.tier == "full"
    assert row.status == "accepted"
    assert row.decided_by == "system"
    assert session.get(Item, lost.item_id).status == "matched"
    assert session.get(Item, found.item_id).status == "matched"
    assert [e[0] for e in notifier.events] == ["match_found"]


def test_stored_breakdown_reproduces_score(session, builder, scene):
    lost, _, _ = scene
    cfg = set_config(session, text=40, image=10, location=25, time=25)
    run = MatchDecisionEngine(session, builder).match_item(lost.item_id)
    for match_id in run.created:
        row = session.get(AiMatch, match_id)
        recomputed = aggregate(FeatureBreakdown.from_match(row).as_dict(), cfg.weights)
        assert abs(recomputed - row.similarity_score) < 1e-6


def test_scoring_same_pair_twice_is_identical(session, builder, scene):
    lost, found, _ = scene
    set_config(session)
    engine = MatchDecisionEngine(session, builder)
    engine.refresh_text_model()
    a, b = ItemView.from_row(lost), ItemView.from_row(found)
    first, second = engine.score_pair(a, b), engine.score_pair(a, b)
    assert first.scored.score == second.scored.score
    assert first.scored.breakdown == second.scored.breakdown


def test_parallel_and_sequential_scoring_agree(session, builder, scene):
    lost, _, _ = scene
    set_config(session)
    seq = MatchDecisionEngine(session, builder, workers=1).quick_match(lost.item_id)
    par = MatchDecisionEngine(session, builder, workers=4).quick_match(lost.item_id)
    assert [(q.item_id, q.score) for q in seq] == [(q.item_id, q.score) for q in par]


def test_quick_match_is_transient_and_includes_below_floor(session, builder, scene):
    lost, found, far = scene
    set_config(session)
    results = MatchDecisionEngine(session, builder).quick_match(lost.item_id)
    assert [q.item_id for q in results] == [found.item_id, far.item_id]
    assert results[1].tier == "below_floor"
    assert _match_count(session) == 0


def test_suggest_uses_keyword_overlap(session, builder, scene):
    lost, found, _ = scene
    suggestions = MatchDecisionEngine(session, builder).suggest(lost.item_id)
    assert suggestions[0] == (found.item_id, 1.0)


def test_match_item_requires_submitted_item(session, builder):
    item = add_item(session, "lost", WALLET, status="archived")
    with pytest.raises(ValidationError):
        MatchDecisionEngine(session, builder).match_item(item.item_id)
    with pytest.raises(NotFoundError):
        MatchDecisionEngine(session, builder).match_item("missing")


def _pending_match(session, builder, scene):
    lost, _, _ = scene
    set_config(session)
    engine = MatchDecisionEngine(session, builder, workers=1)
    match_id = engine.match_item(lost.item_id).created[0]
    return engine, match_id


def test_decide_pending_match_is_a_confirmation(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    row = engine.decide(match_id, "accepted", "admin-7", "owner identified")

    assert row.status == "accepted"
    assert row.decided_by == "admin-7"
    history = engine.history(match_id)
    assert [v.action for v in history] == ["decision"]
    assert MatchState.from_json(history[0].previous_state_json).status == "pending"
    assert session.get(Item, row.lost_item_id).status == "matched"


def test_override_writes_exactly_one_version_with_previous_state(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    engine.decide(match_id, "accepted", "admin-7", "looks right")
    before = MatchState.capture(session.get(AiMatch, match_id))
    versions_before = DecisionVersionRepository(session).count(match_id)

    row = engine.decide(match_id, "rejected", "admin-9", "serial number differs")

    assert row.status == "overridden"
    assert row.override_decision == "rejected"
    assert DecisionVersionRepository(session).count(match_id) == versions_before + 1
    latest = DecisionVersionRepository(session).latest(match_id)
    assert latest.action == "override"
    assert latest.actor_id == "admin-9"
    assert MatchState.from_json(latest.previous_state_json) == before


def test_decision_requires_reason_and_valid_outcome(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    with pytest.raises(ValidationError):
        engine.decide(match_id, "accepted", "admin-7", "  ")
    with pytest.raises(ValidationError):
        engine.decide(match_id, "maybe", "admin-7", "unsure")
    with pytest.raises(NotFoundError):
        engine.decide("nope", "accepted", "admin-7", "x")
    assert DecisionVersionRepository(session).count(match_id) == 0
    assert session.get(AiMatch, match_id).status == "pending"


def test_rollback_restores_latest_snapshot(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    engine.decide(match_id, "accepted", "admin-7", "looks right")
    engine.decide(match_id, "rejected", "admin-9", "wrong owner")

    row = engine.rollback(match_id, "admin-1", "override was a mistake")

    assert row.status == "accepted"
    assert row.override_decision is None
    assert row.decided_by == "admin-7"
    assert [v.action for v in engine.history(match_id)] == ["decision", "override", "rollback"]


def test_rollback_to_named_version(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    engine.decide(match_id, "accepted", "admin-7", "looks right")
    first = engine.history(match_id)[0]
    engine.decide(match_id, "rejected", "admin-9", "wrong owner")

    row = engine.rollback(match_id, "admin-1", "reopen", version_id=first.version_id)
    assert row.status == "pending"


def test_rollback_without_history_fails(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    with pytest.raises(ValidationError):
        engine.rollback(match_id, "admin-1", "nothing to undo")


def test_rescore_is_noop_when_nothing_changed(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    _, changed = engine.rescore_match(match_id)
    assert changed is False
    assert DecisionVersionRepository(session).count(match_id) == 0


def test_rescore_under_new_config_rederives_system_status(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    set_config(session, image=0.0)

    row, changed = engine.rescore_match(match_id)

    assert changed is True
    assert row.match_id == match_id
    assert row.tier == "full"
    assert row.status == "accepted"
    assert row.config_version == 2
    assert [v.action for v in engine.history(match_id)] == ["rescore"]
    _, again = engine.rescore_match(match_id)
    assert again is False


def test_rescore_keeps_human_decision(session, builder, scene):
    engine, match_id = _pending_match(session, builder, scene)
    engine.decide(match_id, "rejected", "admin-7", "different wallet")
    set_config(session, image=0.0)

    row, changed = engine.rescore_match(match_id)

    assert changed is True
    assert row.tier == "full"
    assert row.status == "rejected"
    assert row.decided_by == "admin-7"


def test_rescore_all_counts(session, builder, scene):
    engine, _ = _pending_match(session, builder, scene)
    set_config(session, text=50)
    assert engine.rescore_all() == {"changed": 1, "unchanged": 0}


def test_batch_process_matches_unchecked_items(tmp_path, builder):
    engine = build_engine(f"duckdb:///{tmp_path / 'batch.duckdb'}")
    init_db(engine)
    factory = sessionmaker(bind=engine)
    with factory() as s:
        set_config(s)
        lost = add_item(s, "lost", WALLET).item_id
        found = add_item(s, "found", WALLET).item_id

    result = batch_process(factory, lambda s: MatchDecisionEngine(s, builder, workers=1), limit=10, workers=1)

    assert set(result.processed) == {lost, found}
    assert result.failed == {}
    assert result.matches_created == 1
    with factory() as s:
        assert s.execute(select(func.count()).select_from(AiMatch)).scalar_one() == 1
        assert all(i.similarity_checked for i in s.execute(select(Item)).scalars())
    engine.dispose()


def test_rejected_override_returns_items_to_the_pool(session, builder, scene):
    lost, found, _ = scene
    set_config(session, image=0.0)
    engine = MatchDecisionEngine(session, builder, workers=1)
    match_id = engine.match_item(lost.item_id).created[0]
    assert session.get(AiMatch, match_id).status == "accepted"

    engine.decide(match_id, "rejected", "admin-7", "wrong owner")

    assert session.get(Item, lost.item_id).status == "submitted"
    assert session.get(Item, found.item_id).status == "submitted"
    again = add_item(session, "lost", WALLET, color="black", material="leather")
    pool = ItemRepository(session).candidates_for(again, limit=10)
    assert found.item_id in [i.item_id for i in pool]


def test_rollback_of_acceptance_releases_items(session, builder, scene):
    lost, found, _ = scene
    engine, match_id = _pending_match(session, builder, scene)
    engine.decide(match_id, "accepted", "admin-7", "owner identified")
    assert session.get(Item, found.item_id).status == "matched"

    engine.rollback(match_id, "admin-7", "accepted by mistake")

    assert session.get(AiMatch, match_id).status == "pending"
    assert session.get(Item, lost.item_id).status == "submitted"
    assert session.get(Item, found.item_id).status == "submitted"


def test_item_with_another_accepted_match_stays_matched(session, builder, scene):
    lost, found, _ = scene
    engine, match_id = _pending_match(session, builder, scene)
    other = add_item(session, "lost", WALLET, color="black", material="leather")
    other_id = engine.match_item(other.item_id).created[0]
    engine.decide(match_id, "accepted", "admin-7", "owner identified")
    engine.decide(other_id, "accepted", "admin-7", "second report of the same loss")

    engine.decide(match_id, "rejected", "admin-7", "duplicate report")

    assert session.get(Item, lost.item_id).status == "submitted"
    assert session.get(Item, found.item_id).status == "matched"
    assert session.get(Item, other.item_id).status == "matched"
