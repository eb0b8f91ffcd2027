"""
services/balance_service.py — Loading ledgers and building balance payloads.

The arithmetic lives in balance_ledger.py; this module only gathers the
group's events from the store, hands them to BalanceLedger.recompute() and
shapes the result for the API.

Consistency:
  - sum(balances) must be zero. A non-zero sum means the source data is
    corrupt and surfaces as ConsistencyError (500).
  - A cached ledger that fails check_consistency() is never trusted:
    reconcile() discards it and rebuilds from the store.

Layer rules:
  - No Flask imports. Receives a store and a SessionContext.
  - Returns plain dicts; money leaves as strings.
"""

from __future__ import annotations

import logging

from sharetab.app.errors import AppError, ConsistencyError, ErrorCode, PersistError
from sharetab.app.money import Money
from sharetab.app.services.balance_ledger import BalanceLedger, PairwiseDebt
from sharetab.app.services.expense_coordinator import require_group_member
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


# ── Ledger loading ─────────────────────────────────────────────────────────

async def ledger_for(store: LedgerStore, group_id: int) -> BalanceLedger:
    """Full recompute of a group's ledger from the store, current members only."""
    try:
        expenses    = await store.list_expenses(group_id)
        settlements = await store.list_settlements(group_id)
        memberships = await store.list_memberships(group_id)
    except StoreError as exc:
        raise PersistError(f"Could not load ledger for group {group_id}: {exc}") from exc

    return BalanceLedger.recompute(
        group_id,
        expenses,
        settlements,
        member_ids=[m.member_id for m in memberships],
    )


async def reconcile(store: LedgerStore, ledger: BalanceLedger) -> BalanceLedger:
    """
    Returns `ledger` when its incremental state checks out, otherwise a
    freshly recomputed one.
    """
    try:
        ledger.check_consistency()
        return ledger
    except ConsistencyError as exc:
        logger.warning("discarding cached ledger for group %s: %s", ledger.group_id, exc)
        return await ledger_for(store, ledger.group_id)


# ── Response payloads ──────────────────────────────────────────────────────

async def _member_names(store: LedgerStore, member_ids) -> dict[int, str]:
    names: dict[int, str] = {}
    for member_id in member_ids:
        try:
            profile = await store.get_profile(member_id)
        except StoreError as exc:
            raise PersistError(f"Could not load profile {member_id}: {exc}") from exc
        names[member_id] = profile.display_name if profile else f"member_{member_id}"
    return names


def _debt_dict(debt: PairwiseDebt, names: dict[int, str], symbol: str) -> dict:
    return {
        "from_member_id": debt.debtor,
        "from_name": names.get(debt.debtor, f"member_{debt.debtor}"),
        "to_member_id": debt.creditor,
        "to_name": names.get(debt.creditor, f"member_{debt.creditor}"),
        "amount": str(debt.amount),
        "display": debt.amount.to_display_string(symbol),
    }


async def get_balance_response(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
        symbol: str = "$",
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  -- group does not exist.
        AppError(FORBIDDEN, 403)        -- caller not a group member.
        ConsistencyError (500)          -- balances do not sum to zero.
    """
    await require_group_member(store, group_id, context.profile_id)

    ledger = await ledger_for(store, group_id)
    balances = ledger.balances()
    names = await _member_names(store, balances)

    balance_sum = Money.sum(balances.values())
    if not balance_sum.is_zero:
        raise ConsistencyError(
            f"Balance integrity check failed: sum was {balance_sum} (expected 0.00). "
            f"Group {group_id} has inconsistent financial data."
        )

    return {
        "group_id": group_id,
        "balances": [
            {
                "member_id": member_id,
                "name": names[member_id],
                "balance": str(balance),
                "display": balance.to_display_string(symbol),
            }
            for member_id, balance in balances.items()
        ],
        "pairwise": [_debt_dict(d, names, symbol) for d in ledger.pairwise()],
        "simplified_debts": [_debt_dict(d, names, symbol) for d in ledger.simplified_debts()],
        "balance_sum": str(balance_sum),
    }


async def get_outstanding_response(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
        other_member_id: int,
        symbol: str = "$",
) -> dict:
    """
    Per-expense view between the caller and one other member: what the
    caller still owes them and what they still owe the caller, expense by
    expense, alongside the net pairwise figure.
    """
    await require_group_member(store, group_id, context.profile_id)
    try:
        other = await store.get_membership(group_id, other_member_id)
    except StoreError as exc:
        raise PersistError(f"Could not load membership: {exc}") from exc
    if other is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Profile {other_member_id} is not a member of group {group_id}.",
            404,
            field="with",
        )

    ledger = await ledger_for(store, group_id)
    me = context.profile_id

    def rows(debtor: int, creditor: int) -> list[dict]:
        return [
            {
                "expense_id": row.expense_id,
                "description": row.description,
                "owed": str(row.owed),
                "settled": str(row.settled),
                "remaining": str(row.remaining),
                "display": row.remaining.to_display_string(symbol),
            }
            for row in ledger.expense_outstanding(debtor, creditor)
        ]

    i_owe = ledger.owed_between(me, other_member_id)
    they_owe = ledger.owed_between(other_member_id, me)
    return {
        "group_id": group_id,
        "member_id": me,
        "other_member_id": other_member_id,
        "you_owe": str(i_owe),
        "they_owe": str(they_owe),
        "you_owe_expenses": rows(me, other_member_id),
        "they_owe_expenses": rows(other_member_id, me),
    }
