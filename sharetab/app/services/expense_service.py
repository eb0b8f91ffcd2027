"""
services/expense_service.py — Expense reads, allocation previews and
serialization.

Writes (create, delete, member removal) go through expense_coordinator.py;
this module covers everything that does not mutate:
  - build_policy():     validated schema dict → (participants, SplitPolicy)
  - preview():          allocate() for a group without writing anything
  - rebalance():        replays a custom-share form through ShareRebalancer
  - list / get:         membership-checked reads

Authorization rules:
  - List / preview / rebalance: caller must be a group member
  - Get:                        caller must be a member of the expense's group

Layer rules:
  - No Flask imports. Receives a store and a SessionContext.
"""

from __future__ import annotations

from sharetab.app.errors import AppError, ErrorCode, PersistError
from sharetab.app.money import Money
from sharetab.app.records import ExpenseRecord
from sharetab.app.services.expense_coordinator import ExpenseSubmission, require_group_member
from sharetab.app.services.share_rebalancer import ShareRebalancer
from sharetab.app.services.split_allocator import (
    Allocation,
    EqualSplit,
    ExactSplit,
    PercentageSplit,
    ShareSplit,
    SplitMode,
    SplitPolicy,
    allocate,
)
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError


# ── Request → engine types ─────────────────────────────────────────────────

def build_policy(data: dict) -> tuple[list[int], SplitPolicy]:
    """Turns a validated AllocationRequestSchema dict into allocator input."""
    participants = list(data["participants"])
    mode = data.get("split_mode", SplitMode.EQUAL)

    if mode == SplitMode.SHARES:
        policy: SplitPolicy = ShareSplit(weights=dict(data["weights"]))
    elif mode == SplitMode.PERCENTAGES:
        policy = PercentageSplit(percentages=dict(data["percentages"]))
    elif mode == SplitMode.EXACT:
        policy = ExactSplit(amounts=dict(data["amounts"]))
    else:
        policy = EqualSplit()
    return participants, policy


def build_submission(group_id: int, data: dict) -> ExpenseSubmission:
    """Turns a validated CreateExpenseSchema dict into a coordinator request."""
    participants, policy = build_policy(data)
    return ExpenseSubmission(
        group_id=group_id,
        description=data["description"],
        amount=data["amount"],
        participants=tuple(participants),
        policy=policy,
        date=data.get("date"),
        client_token=data.get("client_token"),
    )


# ── Serialization ──────────────────────────────────────────────────────────

def allocation_dicts(allocations: list[Allocation], symbol: str = "$") -> list[dict]:
    return [
        {
            "member_id": a.member_id,
            "share": f"{a.share.numerator / a.share.denominator:.8f}",
            "amount": str(a.amount),
            "display": a.amount.to_display_string(symbol),
        }
        for a in allocations
    ]


def expense_dict(expense: ExpenseRecord, symbol: str = "$") -> dict:
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "created_by": expense.created_by,
        "description": expense.description,
        "amount": str(expense.amount),
        "display": expense.amount.to_display_string(symbol),
        "date": expense.date.isoformat() if expense.date else None,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "splits": [
            {
                "member_id": s.member_id,
                "amount": str(s.amount),
                "share": f"{float(s.effective_share(expense.amount)):.8f}",
            }
            for s in expense.splits
        ],
        # False once a member's splits were purged from this expense.
        "splits_balanced": expense.split_total == expense.amount,
    }


# ── Reads ──────────────────────────────────────────────────────────────────

async def list_expenses(
        store: LedgerStore, context: SessionContext, group_id: int,
) -> list[ExpenseRecord]:
    """Expenses in a group, newest first, each with its splits."""
    await require_group_member(store, group_id, context.profile_id)
    try:
        return await store.list_expenses(group_id)
    except StoreError as exc:
        raise PersistError(f"Could not load expenses: {exc}") from exc


async def get_expense(
        store: LedgerStore, context: SessionContext, expense_id: int,
) -> ExpenseRecord:
    try:
        expense = await store.get_expense(expense_id)
    except StoreError as exc:
        raise PersistError(f"Could not load expense {expense_id}: {exc}") from exc
    if expense is None:
        raise AppError(ErrorCode.EXPENSE_NOT_FOUND, f"Expense {expense_id} does not exist.", 404)
    await require_group_member(store, expense.group_id, context.profile_id)
    return expense


# ── Previews ───────────────────────────────────────────────────────────────

async def _require_participants(
        store: LedgerStore, group_id: int, participants: list[int],
) -> None:
    try:
        memberships = await store.list_memberships(group_id)
    except StoreError as exc:
        raise PersistError(f"Could not load members: {exc}") from exc
    member_ids = {m.member_id for m in memberships}
    outsiders = [p for p in participants if p not in member_ids]
    if outsiders:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_MEMBER,
            f"Participants {outsiders} are not members of this group.",
            422,
            field="participants",
        )


async def preview(
        store: LedgerStore, context: SessionContext, group_id: int, data: dict,
) -> list[Allocation]:
    """Computes the splits an expense would get. Nothing is written."""
    await require_group_member(store, group_id, context.profile_id)
    participants, policy = build_policy(data)
    await _require_participants(store, group_id, participants)
    return allocate(data["amount"], participants, policy)


async def rebalance(
        store: LedgerStore, context: SessionContext, group_id: int, data: dict,
) -> dict:
    """
    Replays a custom-share form and reports where it settled.

    When the locked shares exceed 100% the result is reported invalid and
    carries no amounts; the client keeps editing.
    """
    await require_group_member(store, group_id, context.profile_id)
    await _require_participants(store, group_id, list(data["participants"]))

    total: Money = data["amount"]
    rebalancer = ShareRebalancer(data["participants"])
    for member_id in data.get("excluded") or []:
        rebalancer.toggle_participant(member_id, included=False)
    for edit in data.get("edits") or []:
        if edit.get("units") is not None:
            rebalancer.edit_share(edit["member_id"], edit["units"])
        else:
            rebalancer.edit_amount(edit["member_id"], edit["amount"], total)

    valid = rebalancer.is_valid()
    return {
        "participants": rebalancer.participants,
        "percent_units": {str(m): u for m, u in rebalancer.percent_units.items()},
        "locked": sorted(rebalancer.locked),
        "total_units": rebalancer.total_units(),
        "valid": valid,
        "allocations": allocation_dicts(rebalancer.allocate(total)) if valid else [],
    }
