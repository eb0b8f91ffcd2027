"""
tests/integration/test_expenses.py — Integration tests for expense endpoints.

Endpoints covered:
  POST   /groups/:id/expenses            → 201 (all four split modes)
  GET    /groups/:id/expenses            → 200
  POST   /groups/:id/expenses/preview    → 200, nothing written
  POST   /groups/:id/expenses/rebalance  → 200
  GET    /expenses/:id                   → 200 / 403 / 404
  DELETE /expenses/:id                   → 200 (creator or admin)

Invariants verified:
  - Split amounts always sum to the expense amount at creation
  - The remainder cent goes to the earliest participants in request order
  - Validation failures come back as 400 with the registered error code
  - A rejected expense leaves no rows behind
"""

from __future__ import annotations

import pytest

from sharetab.app.errors import ErrorCode

from .conftest import add_member, make_expense, make_group, sign_in


def _setup(client, app):
    """Alice (admin) + Bob + Carol in one group."""
    alice = sign_in(client, app, "Alice")
    bob = sign_in(client, app, "Bob")
    carol = sign_in(client, app, "Carol")
    group = make_group(client, alice)
    add_member(client, alice, group["id"], profile_id=bob.id)
    add_member(client, alice, group["id"], profile_id=carol.id)
    return alice, bob, carol, group


def _split_amounts(resp) -> dict[int, str]:
    return {s["member_id"]: s["amount"] for s in resp.get_json()["data"]["splits"]}


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses — happy paths
# ═══════════════════════════════════════════════════════════════════════════

def test_equal_split_remainder_in_request_order(client, app):
    alice, bob, carol, group = _setup(client, app)

    resp = make_expense(client, alice, group["id"], "100.00", [carol.id, alice.id, bob.id])

    assert resp.status_code == 201
    data = resp.get_json()["data"]
    assert data["amount"] == "100.00"
    assert data["created_by"] == alice.id
    assert data["splits_balanced"] is True
    assert _split_amounts(resp) == {carol.id: "33.34", alice.id: "33.33", bob.id: "33.33"}


def test_share_split(client, app):
    alice, bob, _, group = _setup(client, app)
    resp = make_expense(
        client, alice, group["id"], "90.00", [alice.id, bob.id],
        split_mode="shares", weights={str(alice.id): 2, str(bob.id): 1},
    )
    assert resp.status_code == 201
    assert _split_amounts(resp) == {alice.id: "60.00", bob.id: "30.00"}


def test_percentage_split(client, app):
    alice, bob, _, group = _setup(client, app)
    resp = make_expense(
        client, alice, group["id"], "10.00", [alice.id, bob.id],
        split_mode="percentages", percentages={str(alice.id): "75", str(bob.id): "25"},
    )
    assert resp.status_code == 201
    assert _split_amounts(resp) == {alice.id: "7.50", bob.id: "2.50"}


def test_exact_split(client, app):
    alice, bob, _, group = _setup(client, app)
    resp = make_expense(
        client, alice, group["id"], "10.00", [alice.id, bob.id],
        split_mode="exact", amounts={str(alice.id): "3.00", str(bob.id): "7.00"},
    )
    assert resp.status_code == 201
    assert _split_amounts(resp) == {alice.id: "3.00", bob.id: "7.00"}


def test_list_expenses_newest_first(client, app):
    alice, bob, _, group = _setup(client, app)
    first = make_expense(client, alice, group["id"], "1.00", [alice.id]).get_json()["data"]
    second = make_expense(client, bob, group["id"], "2.00", [bob.id]).get_json()["data"]

    resp = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=alice.headers)
    assert resp.status_code == 200
    assert [e["id"] for e in resp.get_json()["data"]] == [second["id"], first["id"]]


# ═══════════════════════════════════════════════════════════════════════════
# POST /groups/:id/expenses — failure paths
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("amount,code", [
    ("abc", ErrorCode.INVALID_AMOUNT),
    ("0.00", ErrorCode.INVALID_FIELD),
])
def test_bad_amount(client, app, amount, code):
    alice, _, _, group = _setup(client, app)
    resp = make_expense(client, alice, group["id"], amount, [alice.id])

    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == code
    assert resp.get_json()["error"]["field"] == "amount"


def test_unknown_split_mode(client, app):
    alice, _, _, group = _setup(client, app)
    resp = make_expense(client, alice, group["id"], "1.00", [alice.id], split_mode="vibes")
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == ErrorCode.INVALID_SPLIT_MODE


def test_duplicate_participant(client, app):
    alice, _, _, group = _setup(client, app)
    resp = make_expense(client, alice, group["id"], "1.00", [alice.id, alice.id])
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == ErrorCode.DUPLICATE_SPLIT_USER


def test_missing_description(client, app):
    alice, _, _, group = _setup(client, app)
    resp = client.post(
        f"/api/v1/groups/{group['id']}/expenses",
        json={"amount": "1.00", "participants": [alice.id]},
        headers=alice.headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == ErrorCode.MISSING_FIELD
    assert resp.get_json()["error"]["field"] == "description"


def test_percentages_must_total_100(client, app):
    alice, bob, _, group = _setup(client, app)
    resp = make_expense(
        client, alice, group["id"], "10.00", [alice.id, bob.id],
        split_mode="percentages", percentages={str(alice.id): "50", str(bob.id): "40"},
    )
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == ErrorCode.INVALID_SHARE_TOTAL


def test_exact_amounts_must_match_total(client, app):
    alice, bob, _, group = _setup(client, app)
    resp = make_expense(
        client, alice, group["id"], "10.00", [alice.id, bob.id],
        split_mode="exact", amounts={str(alice.id): "3.00", str(bob.id): "6.00"},
    )
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == ErrorCode.SPLIT_SUM_MISMATCH

    listed = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=alice.headers)
    assert listed.get_json()["data"] == []


def test_outsider_participant(client, app):
    alice, _, _, group = _setup(client, app)
    dave = sign_in(client, app, "Dave")
    resp = make_expense(client, alice, group["id"], "10.00", [alice.id, dave.id])
    assert resp.status_code == 422
    assert resp.get_json()["error"]["code"] == ErrorCode.PARTICIPANT_NOT_MEMBER


def test_outsider_cannot_create(client, app):
    _, _, _, group = _setup(client, app)
    dave = sign_in(client, app, "Dave")
    resp = make_expense(client, dave, group["id"], "10.00", [dave.id])
    assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Preview & rebalance
# ═══════════════════════════════════════════════════════════════════════════

def test_preview_writes_nothing(client, app):
    alice, bob, carol, group = _setup(client, app)
    resp = client.post(
        f"/api/v1/groups/{group['id']}/expenses/preview",
        json={"amount": "100.00", "participants": [alice.id, bob.id, carol.id]},
        headers=bob.headers,
    )

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["split_mode"] == "equal"
    assert [a["amount"] for a in data["allocations"]] == ["33.34", "33.33", "33.33"]

    listed = client.get(f"/api/v1/groups/{group['id']}/expenses", headers=alice.headers)
    assert listed.get_json()["data"] == []


def test_rebalance(client, app):
    alice, bob, carol, group = _setup(client, app)
    resp = client.post(
        f"/api/v1/groups/{group['id']}/expenses/rebalance",
        json={
            "amount": "100.00",
            "participants": [alice.id, bob.id, carol.id],
            "edits": [{"member_id": bob.id, "units": 5000}],
        },
        headers=alice.headers,
    )

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["valid"] is True
    assert data["locked"] == [bob.id]
    assert data["percent_units"][str(bob.id)] == 5000
    assert [a["amount"] for a in data["allocations"]] == ["25.00", "50.00", "25.00"]


def test_rebalance_over_allocated(client, app):
    alice, bob, carol, group = _setup(client, app)
    resp = client.post(
        f"/api/v1/groups/{group['id']}/expenses/rebalance",
        json={
            "amount": "100.00",
            "participants": [alice.id, bob.id, carol.id],
            "edits": [
                {"member_id": alice.id, "units": 7000},
                {"member_id": bob.id, "units": 5000},
            ],
        },
        headers=alice.headers,
    )
    assert resp.status_code == 200
    assert resp.get_json()["data"]["valid"] is False
    assert resp.get_json()["data"]["allocations"] == []


# ═══════════════════════════════════════════════════════════════════════════
# GET / DELETE /expenses/:id
# ═══════════════════════════════════════════════════════════════════════════

def test_get_expense(client, app):
    alice, bob, _, group = _setup(client, app)
    created = make_expense(client, alice, group["id"], "20.00", [alice.id, bob.id]).get_json()["data"]

    resp = client.get(f"/api/v1/expenses/{created['id']}", headers=bob.headers)
    assert resp.status_code == 200
    fetched = resp.get_json()["data"]
    assert fetched["id"] == created["id"]
    assert fetched["amount"] == "20.00"
    assert fetched["splits"] == created["splits"]


def test_get_expense_outsider_and_missing(client, app):
    alice, _, _, group = _setup(client, app)
    created = make_expense(client, alice, group["id"], "20.00", [alice.id]).get_json()["data"]
    dave = sign_in(client, app, "Dave")

    assert client.get(f"/api/v1/expenses/{created['id']}", headers=dave.headers).status_code == 403
    missing = client.get("/api/v1/expenses/999999", headers=alice.headers)
    assert missing.status_code == 404
    assert missing.get_json()["error"]["code"] == ErrorCode.EXPENSE_NOT_FOUND


def test_delete_expense_by_creator(client, app):
    alice, bob, _, group = _setup(client, app)
    created = make_expense(client, bob, group["id"], "20.00", [alice.id, bob.id]).get_json()["data"]

    resp = client.delete(f"/api/v1/expenses/{created['id']}", headers=bob.headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"id": created["id"], "group_id": group["id"], "deleted": True}
    assert client.get(f"/api/v1/expenses/{created['id']}", headers=bob.headers).status_code == 404


def test_delete_expense_by_admin(client, app):
    alice, bob, _, group = _setup(client, app)
    created = make_expense(client, bob, group["id"], "20.00", [bob.id]).get_json()["data"]
    assert client.delete(f"/api/v1/expenses/{created['id']}", headers=alice.headers).status_code == 200


def test_delete_expense_by_other_member_forbidden(client, app):
    alice, bob, carol, group = _setup(client, app)
    created = make_expense(client, bob, group["id"], "20.00", [bob.id]).get_json()["data"]
    assert client.delete(f"/api/v1/expenses/{created['id']}", headers=carol.headers).status_code == 403
