"""
services/settlement_service.py — Recording and listing settlements.

Settlements are append-only: there is no update or delete path.

Rules enforced here:
  FORBIDDEN (403)              — the payer (caller) must be a group member
  SELF_SETTLEMENT (422)        — paid_by must not equal paid_to
  RECIPIENT_NOT_MEMBER (422)   — paid_to must be a group member
  OVERPAYMENT (warning)        — amount exceeds what the payer currently owes
                                 the recipient; recorded anyway, pre-payment
                                 is valid

Notes on self-settlement:
  The schema cannot check this because paid_by comes from the session
  context, not the request body. The DB also has a CHECK constraint as the
  final defence layer.

Notes on expense_id:
  The link is informational. It must belong to the same group when given,
  but a settlement keeps counting after its expense is deleted.

Layer rules:
  - No Flask imports. Receives a store and a SessionContext.
  - Commits are the route's responsibility.
"""

from __future__ import annotations

import logging

from sharetab.app.errors import AppError, ErrorCode, InvalidAmount, PersistError, WarningCode
from sharetab.app.money import Money
from sharetab.app.records import SettlementDraft, SettlementRecord
from sharetab.app.services.balance_ledger import BalanceLedger
from sharetab.app.services.balance_service import ledger_for
from sharetab.app.services.expense_coordinator import require_group_member
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


async def create_settlement(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
        data: dict,
        ledger: BalanceLedger | None = None,
) -> tuple[SettlementRecord, list[dict]]:
    """
    Records a payment from the caller to data["paid_to"].

    Args:
        data:   Validated dict from CreateSettlementSchema.
                Keys: paid_to (int), amount (Money), expense_id (int | None),
                note (str | None).
        ledger: Optional ledger observer, updated once the row is written.

    Returns:
        (settlement, warnings). An empty warnings list means no warnings.
    """
    await require_group_member(store, group_id, context.profile_id)

    paid_by = context.profile_id
    paid_to: int = data["paid_to"]
    amount: Money = data["amount"]
    expense_id: int | None = data.get("expense_id")

    if not amount.is_positive:
        raise InvalidAmount("Settlement amount must be greater than zero.", field="amount")

    if paid_by == paid_to:
        raise AppError(
            ErrorCode.SELF_SETTLEMENT,
            "A settlement cannot be made to yourself.",
            422,
            field="paid_to",
        )

    try:
        recipient = await store.get_membership(group_id, paid_to)
        expense = await store.get_expense(expense_id) if expense_id is not None else None
    except StoreError as exc:
        raise PersistError(f"Could not validate settlement: {exc}") from exc

    if recipient is None:
        raise AppError(
            ErrorCode.RECIPIENT_NOT_MEMBER,
            f"Profile {paid_to} is not a member of group {group_id}.",
            422,
            field="paid_to",
        )
    if expense_id is not None and (expense is None or expense.group_id != group_id):
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist in group {group_id}.",
            404,
            field="expense_id",
        )

    warnings: list[dict] = []
    current = await ledger_for(store, group_id)
    outstanding = current.owed_between(paid_by, paid_to)
    if amount > outstanding:
        warnings.append({
            "code": WarningCode.OVERPAYMENT,
            "message": (
                f"Settlement of {amount} exceeds current outstanding debt of "
                f"{outstanding} from member {paid_by} to member {paid_to}. "
                f"Recorded anyway, pre-payment is valid."
            ),
        })

    draft = SettlementDraft(
        group_id=group_id,
        paid_by=paid_by,
        paid_to=paid_to,
        amount=amount,
        expense_id=expense_id,
        note=data.get("note"),
    )
    try:
        settlement = await store.insert_settlement(draft)
    except StoreError as exc:
        raise PersistError(f"Could not record settlement: {exc}") from exc

    logger.info(
        "settlement %s recorded in group %s: %s -> %s %s",
        settlement.id, group_id, paid_by, paid_to, amount,
    )
    if ledger is not None and ledger.group_id == group_id:
        ledger.on_settlement_added(settlement)
    return settlement, warnings


async def list_settlements(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
) -> list[SettlementRecord]:
    """Returns all settlements for a group, newest first."""
    await require_group_member(store, group_id, context.profile_id)
    try:
        return await store.list_settlements(group_id)
    except StoreError as exc:
        raise PersistError(f"Could not load settlements: {exc}") from exc
