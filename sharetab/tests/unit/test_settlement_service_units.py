"""
tests/unit/test_settlement_service_units.py — Unit tests for settlement_service.

What this file proves:
  - Settlements are recorded from the caller to a group member
  - SELF_SETTLEMENT / RECIPIENT_NOT_MEMBER / EXPENSE_NOT_FOUND are rejected
    before anything is written
  - Paying more than is owed is recorded with an OVERPAYMENT warning
  - Store failures surface as PersistError
"""

from __future__ import annotations

import asyncio

import pytest

from sharetab.app.errors import AppError, ErrorCode, InvalidAmount, PersistError, WarningCode
from sharetab.app.money import Money
from sharetab.app.services import settlement_service
from sharetab.app.services.balance_ledger import BalanceLedger
from sharetab.app.services.expense_coordinator import ExpenseCoordinator, ExpenseSubmission


def _dinner(h, amount="90.00"):
    """Alice pays, split equally between all three."""
    submission = ExpenseSubmission(
        group_id=h.group.id,
        description="Dinner",
        amount=Money.parse(amount),
        participants=(h.alice.id, h.bob.id, h.carol.id),
    )
    return asyncio.run(ExpenseCoordinator(h.store).submit_expense(h.as_(h.alice), submission))


def _settle(h, payer, data, ledger=None):
    return asyncio.run(settlement_service.create_settlement(
        h.store, h.as_(payer), h.group.id, data, ledger=ledger,
    ))


def test_settlement_recorded_without_warning(household):
    h = household
    _dinner(h)

    settlement, warnings = _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money.parse("30.00")})

    assert settlement.paid_by == h.bob.id
    assert settlement.paid_to == h.alice.id
    assert settlement.amount == Money.parse("30.00")
    assert warnings == []
    assert settlement.id in h.store.settlements


def test_overpayment_is_recorded_with_warning(household):
    h = household
    _dinner(h)

    settlement, warnings = _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money.parse("45.00")})

    assert settlement.id in h.store.settlements
    assert [w["code"] for w in warnings] == [WarningCode.OVERPAYMENT]


def test_prepayment_with_no_debt_warns(household):
    h = household
    _, warnings = _settle(h, h.alice, {"paid_to": h.bob.id, "amount": Money(1)})
    assert warnings[0]["code"] == WarningCode.OVERPAYMENT


def test_self_settlement_rejected(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        _settle(h, h.bob, {"paid_to": h.bob.id, "amount": Money(100)})

    assert exc_info.value.code == ErrorCode.SELF_SETTLEMENT
    assert exc_info.value.http_status == 422
    assert h.store.settlements == {}


def test_recipient_must_be_member(household):
    h = household
    outsider = h.store.add_profile("Mallory")

    with pytest.raises(AppError) as exc_info:
        _settle(h, h.bob, {"paid_to": outsider.id, "amount": Money(100)})
    assert exc_info.value.code == ErrorCode.RECIPIENT_NOT_MEMBER


def test_payer_must_be_member(household):
    h = household
    outsider = h.store.add_profile("Mallory")

    with pytest.raises(AppError) as exc_info:
        _settle(h, outsider, {"paid_to": h.alice.id, "amount": Money(100)})
    assert exc_info.value.code == ErrorCode.FORBIDDEN


def test_non_positive_amount_rejected(household):
    h = household
    with pytest.raises(InvalidAmount):
        _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(0)})


def test_linked_expense_must_be_in_group(household):
    h = household
    other_group = h.store.add_group("Other", h.alice, h.bob)

    with pytest.raises(AppError) as exc_info:
        _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(100), "expense_id": 555})
    assert exc_info.value.code == ErrorCode.EXPENSE_NOT_FOUND

    foreign = asyncio.run(ExpenseCoordinator(h.store).submit_expense(
        h.as_(h.alice),
        ExpenseSubmission(
            group_id=other_group.id, description="Elsewhere",
            amount=Money(1000), participants=(h.alice.id, h.bob.id),
        ),
    ))
    with pytest.raises(AppError) as exc_info:
        _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(100), "expense_id": foreign.id})
    assert exc_info.value.code == ErrorCode.EXPENSE_NOT_FOUND


def test_linked_expense_and_note_are_stored(household):
    h = household
    expense = _dinner(h)

    settlement, _ = _settle(h, h.carol, {
        "paid_to": h.alice.id,
        "amount": Money.parse("30.00"),
        "expense_id": expense.id,
        "note": "venmo",
    })
    assert settlement.expense_id == expense.id
    assert settlement.note == "venmo"


def test_ledger_observer_receives_settlement(household):
    h = household
    _dinner(h)
    from sharetab.app.services.balance_service import ledger_for
    ledger = asyncio.run(ledger_for(h.store, h.group.id))

    _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money.parse("30.00")}, ledger=ledger)

    assert ledger.balance_of(h.bob.id).is_zero
    ledger.check_consistency()


def test_store_failure_becomes_persist_error(household):
    h = household
    h.store.fail_on.add("insert_settlement")

    with pytest.raises(PersistError):
        _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(100)})


def test_list_settlements_newest_first(household):
    h = household
    first, _ = _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(100)})
    second, _ = _settle(h, h.carol, {"paid_to": h.alice.id, "amount": Money(200)})

    rows = asyncio.run(settlement_service.list_settlements(h.store, h.as_(h.alice), h.group.id))
    assert [s.id for s in rows] == [second.id, first.id]


def test_list_settlements_unknown_group(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        asyncio.run(settlement_service.list_settlements(h.store, h.as_(h.alice), 99999))
    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND


def test_unused_ledger_for_other_group_is_left_alone(household):
    h = household
    ledger = BalanceLedger(group_id=h.group.id + 1000)
    _settle(h, h.bob, {"paid_to": h.alice.id, "amount": Money(100)}, ledger=ledger)
    assert ledger.version == 0
