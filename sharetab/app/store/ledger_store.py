"""
store/ledger_store.py — Data-access collaborator contract.

The engine talks to persistence only through this protocol. Every method is
a coroutine: a backend may suspend on I/O, and the coordinator is written to
tolerate interleaving at every await.

Contract:
  - Inserts return the created record (with its generated id).
  - Deletes are scoped by foreign-key predicates, e.g.
    delete_splits(member_id, expense_ids).
  - Rows cross the boundary as the frozen dataclasses in records.py,
    never as ORM objects or loose dicts.
  - Any backend failure is raised as StoreError. Callers decide whether to
    compensate; the store never retries.

Layer rules:
  - No Flask imports.
  - No business rules (membership checks, admin checks, sum checks).
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

from sharetab.app.records import (
    ExpenseDraft,
    ExpenseRecord,
    GroupRecord,
    MembershipRecord,
    ProfileRecord,
    Role,
    SettlementDraft,
    SettlementRecord,
    SplitDraft,
    SplitRecord,
)


class StoreError(Exception):
    """A data-access call failed. The message names the operation."""

    def __init__(self, operation: str, detail: str = "") -> None:
        message = f"{operation} failed" + (f": {detail}" if detail else "")
        super().__init__(message)
        self.operation = operation
        self.detail    = detail


class LedgerStore(Protocol):

    # ── Profiles ───────────────────────────────────────────────────────────

    async def get_profile(self, profile_id: int) -> ProfileRecord | None: ...

    async def get_profile_by_auth(self, auth_user_id: str) -> ProfileRecord | None: ...

    async def insert_profile(
            self,
            display_name: str,
            email: str | None = None,
            auth_user_id: str | None = None,
    ) -> ProfileRecord: ...

    async def update_profile(self, profile_id: int, **fields: object) -> ProfileRecord: ...

    # ── Groups & memberships ───────────────────────────────────────────────

    async def get_group(self, group_id: int) -> GroupRecord | None: ...

    async def list_groups_for(self, member_id: int) -> list[GroupRecord]: ...

    async def insert_group(self, name: str, created_by: int) -> GroupRecord: ...

    async def get_membership(self, group_id: int, member_id: int) -> MembershipRecord | None: ...

    async def list_memberships(self, group_id: int) -> list[MembershipRecord]: ...

    async def insert_membership(
            self, group_id: int, member_id: int, role: Role = Role.MEMBER,
    ) -> MembershipRecord: ...

    async def delete_membership(self, group_id: int, member_id: int) -> None: ...

    # ── Expenses & splits ──────────────────────────────────────────────────

    async def get_expense(self, expense_id: int) -> ExpenseRecord | None: ...

    async def list_expenses(self, group_id: int) -> list[ExpenseRecord]: ...

    async def insert_expense(self, draft: ExpenseDraft) -> ExpenseRecord: ...

    async def delete_expense(self, expense_id: int) -> None: ...

    async def insert_splits(
            self, expense_id: int, splits: Sequence[SplitDraft],
    ) -> list[SplitRecord]: ...

    async def list_member_splits(self, group_id: int, member_id: int) -> list[SplitRecord]: ...

    async def delete_splits(self, member_id: int, expense_ids: Iterable[int]) -> int: ...

    # ── Settlements ────────────────────────────────────────────────────────

    async def insert_settlement(self, draft: SettlementDraft) -> SettlementRecord: ...

    async def list_settlements(self, group_id: int) -> list[SettlementRecord]: ...
