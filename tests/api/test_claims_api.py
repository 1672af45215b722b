"""API tests for competing claims."""

import pytest

from conftest import add_item

ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}
ALICE = {"X-Actor-Id": "alice"}
BOB = {"X-Actor-Id": "bob"}

STRONG = ["Serial number ABC123 engraved on the back and I have the purchase receipt"]
WEAK = ["it's mine"]


@pytest.fixture
def found_id(api):
    with api.Session() as session:
        return add_item(session, "found", "Silver laptop", category="electronics").item_id


def _claim(api, item_id, headers, proofs):
    return api.client.post(f"/items/{item_id}/claims", json={"proofs": proofs}, headers=headers)


def test_single_claim_stays_pending(api, found_id):
    res = _claim(api, found_id, ALICE, STRONG)
    assert res.status_code == 200
    data = res.json()
    assert data["claim"]["claimantId"] == "alice"
    assert data["resolution"]["conflict"] is False
    assert data["resolution"]["claims"][0]["status"] == "pending"
    assert data["resolution"]["claims"][0]["isLeading"] is False


def test_competing_claims_ranked_and_flagged(api, found_id):
    alice = _claim(api, found_id, ALICE, STRONG).json()["claim"]["claimId"]
    res = _claim(api, found_id, BOB, WEAK).json()["resolution"]

    assert res["conflict"] is True
    assert res["leadingClaimId"] == alice
    by_id = {c["claimId"]: c for c in res["claims"]}
    assert {c["status"] for c in res["claims"]} == {"conflict"}
    assert by_id[alice]["rank"] == 1 and by_id[alice]["isSuspicious"] is False
    bob = next(c for c in res["claims"] if c["claimId"] != alice)
    assert bob["isSuspicious"] is True
    assert "weak_proof" in bob["suspicionReasons"]

    again = api.client.post(f"/claims/{found_id}/resolve", headers=ADMIN).json()
    assert [c["claimId"] for c in again["claims"]] == [c["claimId"] for c in res["claims"]]
    assert [e[0] for e in api.notifier.events].count("claims_resolved") == 3


def test_claim_validation(api, found_id):
    with api.Session() as session:
        lost_id = add_item(session, "lost", "Silver laptop", category="electronics").item_id

    assert _claim(api, found_id, {}, STRONG).status_code == 401
    assert _claim(api, lost_id, ALICE, STRONG).status_code == 400
    assert _claim(api, "missing", ALICE, STRONG).status_code == 404
    assert _claim(api, found_id, ALICE, STRONG).status_code == 200
    assert _claim(api, found_id, ALICE, WEAK).status_code == 400
    assert api.client.post(f"/claims/{found_id}/resolve", headers=ALICE).status_code == 403


def test_withdrawal_clears_conflict(api, found_id):
    _claim(api, found_id, ALICE, STRONG)
    bob_claim = _claim(api, found_id, BOB, WEAK).json()["claim"]["claimId"]

    assert api.client.post(f"/claims/{bob_claim}/withdraw", headers=ALICE).status_code == 400

    res = api.client.post(f"/claims/{bob_claim}/withdraw", headers=BOB)
    assert res.status_code == 200
    data = res.json()
    assert data["conflict"] is False
    assert len(data["claims"]) == 1
    assert data["claims"][0]["status"] == "pending"

    assert api.client.post(f"/claims/{bob_claim}/withdraw", headers=BOB).status_code == 400
