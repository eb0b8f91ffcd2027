"""
store/sql_store.py — LedgerStore backed by a SQLAlchemy session.

Maps ORM rows to the frozen records in records.py at the boundary. Nothing
above this module ever holds an ORM instance.

Transaction rules:
  - Each write runs inside its own SAVEPOINT (session.begin_nested()), so a
    failed split insert rolls back only that step. The expense row written
    just before it is still there, and the coordinator's compensating
    delete_expense can run on a healthy session.
  - The store only flushes. Commits are the route's responsibility.
  - SQLAlchemyError is re-raised as StoreError with the operation name.

The methods are coroutines to satisfy the LedgerStore protocol; the
session underneath is synchronous, so no call actually suspends.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from fractions import Fraction
from typing import Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from sharetab.app.models.expense import Expense
from sharetab.app.models.group import Group
from sharetab.app.models.membership import Membership
from sharetab.app.models.profile import Profile
from sharetab.app.models.settlement import Settlement
from sharetab.app.models.split import Split
from sharetab.app.money import Money
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
from sharetab.app.store.ledger_store import StoreError

logger = logging.getLogger(__name__)

_SHARE_PLACES = Decimal("0.00000001")

# Profile columns a caller may change through update_profile().
_PROFILE_FIELDS = frozenset({
    "display_name",
    "email",
    "avatar_url",
    "venmo_username",
    "cashapp_username",
    "paypal_username",
})


# ── Row → record mapping ───────────────────────────────────────────────────

def _share_to_db(share: Fraction | None) -> Decimal | None:
    if share is None:
        return None
    return (Decimal(share.numerator) / Decimal(share.denominator)).quantize(_SHARE_PLACES)


def _share_from_db(share: Decimal | None) -> Fraction | None:
    return Fraction(share) if share is not None else None


def _profile_record(row: Profile) -> ProfileRecord:
    return ProfileRecord(
        id=row.id,
        display_name=row.display_name,
        email=row.email,
        auth_user_id=row.auth_user_id,
        avatar_url=row.avatar_url,
        venmo_username=row.venmo_username,
        cashapp_username=row.cashapp_username,
        paypal_username=row.paypal_username,
    )


def _group_record(row: Group) -> GroupRecord:
    return GroupRecord(
        id=row.id,
        name=row.name,
        created_by=row.created_by,
        created_at=row.created_at,
    )


def _membership_record(row: Membership, auth_user_id: str | None) -> MembershipRecord:
    return MembershipRecord(
        group_id=row.group_id,
        member_id=row.profile_id,
        role=Role(row.role),
        authenticated=auth_user_id is not None,
    )


def _split_record(row: Split) -> SplitRecord:
    return SplitRecord(
        expense_id=row.expense_id,
        member_id=row.profile_id,
        amount=Money.from_decimal(row.amount),
        share=_share_from_db(row.share),
    )


def _expense_record(row: Expense) -> ExpenseRecord:
    return ExpenseRecord(
        id=row.id,
        group_id=row.group_id,
        created_by=row.created_by,
        description=row.description,
        amount=Money.from_decimal(row.amount),
        date=row.date,
        created_at=row.created_at,
        splits=tuple(_split_record(s) for s in row.splits),
    )


def _settlement_record(row: Settlement) -> SettlementRecord:
    return SettlementRecord(
        id=row.id,
        group_id=row.group_id,
        paid_by=row.paid_by,
        paid_to=row.paid_to,
        amount=Money.from_decimal(row.amount),
        expense_id=row.expense_id,
        note=row.note,
        created_at=row.created_at,
    )


# ── Store ──────────────────────────────────────────────────────────────────

class SqlLedgerStore:

    def __init__(self, session: Session) -> None:
        self._session = session

    def _write(self, operation: str, action):
        """Runs `action()` inside a savepoint, translating driver errors."""
        try:
            with self._session.begin_nested():
                result = action()
                self._session.flush()
            return result
        except SQLAlchemyError as exc:
            logger.warning("store write %s failed: %s", operation, exc)
            raise StoreError(operation, str(exc.__class__.__name__)) from exc

    def _read(self, operation: str, action):
        try:
            return action()
        except SQLAlchemyError as exc:
            raise StoreError(operation, str(exc.__class__.__name__)) from exc

    # ── Profiles ───────────────────────────────────────────────────────────

    async def get_profile(self, profile_id: int) -> ProfileRecord | None:
        row = self._read("get_profile", lambda: self._session.get(Profile, profile_id))
        return _profile_record(row) if row is not None else None

    async def get_profile_by_auth(self, auth_user_id: str) -> ProfileRecord | None:
        row = self._read(
            "get_profile_by_auth",
            lambda: self._session.execute(
                select(Profile).where(Profile.auth_user_id == auth_user_id)
            ).scalar_one_or_none(),
        )
        return _profile_record(row) if row is not None else None

    async def insert_profile(
            self,
            display_name: str,
            email: str | None = None,
            auth_user_id: str | None = None,
    ) -> ProfileRecord:
        row = Profile(display_name=display_name, email=email, auth_user_id=auth_user_id)

        def action():
            self._session.add(row)
            return row

        return _profile_record(self._write("insert_profile", action))

    async def update_profile(self, profile_id: int, **fields: object) -> ProfileRecord:
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise StoreError("update_profile", f"unknown fields {sorted(unknown)}")

        def action():
            row = self._session.get(Profile, profile_id)
            if row is None:
                raise StoreError("update_profile", f"profile {profile_id} not found")
            for name, value in fields.items():
                setattr(row, name, value)
            return row

        return _profile_record(self._write("update_profile", action))

    # ── Groups & memberships ───────────────────────────────────────────────

    async def get_group(self, group_id: int) -> GroupRecord | None:
        row = self._read("get_group", lambda: self._session.get(Group, group_id))
        return _group_record(row) if row is not None else None

    async def list_groups_for(self, member_id: int) -> list[GroupRecord]:
        rows = self._read(
            "list_groups_for",
            lambda: self._session.execute(
                select(Group)
                .join(Membership, Membership.group_id == Group.id)
                .where(Membership.profile_id == member_id)
                .order_by(Group.created_at.desc(), Group.id.desc())
            ).scalars().all(),
        )
        return [_group_record(r) for r in rows]

    async def insert_group(self, name: str, created_by: int) -> GroupRecord:
        row = Group(name=name, created_by=created_by)

        def action():
            self._session.add(row)
            return row

        return _group_record(self._write("insert_group", action))

    async def get_membership(self, group_id: int, member_id: int) -> MembershipRecord | None:
        found = self._read(
            "get_membership",
            lambda: self._session.execute(
                select(Membership, Profile.auth_user_id)
                .join(Profile, Profile.id == Membership.profile_id)
                .where(
                    Membership.group_id == group_id,
                    Membership.profile_id == member_id,
                )
            ).first(),
        )
        if found is None:
            return None
        return _membership_record(found[0], found[1])

    async def list_memberships(self, group_id: int) -> list[MembershipRecord]:
        rows = self._read(
            "list_memberships",
            lambda: self._session.execute(
                select(Membership, Profile.auth_user_id)
                .join(Profile, Profile.id == Membership.profile_id)
                .where(Membership.group_id == group_id)
                .order_by(Membership.joined_at, Membership.id)
            ).all(),
        )
        return [_membership_record(m, auth) for m, auth in rows]

    async def insert_membership(
            self, group_id: int, member_id: int, role: Role = Role.MEMBER,
    ) -> MembershipRecord:
        row = Membership(group_id=group_id, profile_id=member_id, role=role)

        def action():
            self._session.add(row)
            return row

        self._write("insert_membership", action)
        record = await self.get_membership(group_id, member_id)
        if record is None:  # pragma: no cover
            raise StoreError("insert_membership", "row not visible after insert")
        return record

    async def delete_membership(self, group_id: int, member_id: int) -> None:
        self._write(
            "delete_membership",
            lambda: self._session.execute(
                delete(Membership).where(
                    Membership.group_id == group_id,
                    Membership.profile_id == member_id,
                )
            ),
        )

    # ── Expenses & splits ──────────────────────────────────────────────────

    async def get_expense(self, expense_id: int) -> ExpenseRecord | None:
        row = self._read(
            "get_expense",
            lambda: self._session.execute(
                select(Expense)
                .options(selectinload(Expense.splits))
                .where(Expense.id == expense_id)
            ).scalar_one_or_none(),
        )
        return _expense_record(row) if row is not None else None

    async def list_expenses(self, group_id: int) -> list[ExpenseRecord]:
        rows = self._read(
            "list_expenses",
            lambda: self._session.execute(
                select(Expense)
                .options(selectinload(Expense.splits))
                .where(Expense.group_id == group_id)
                .order_by(Expense.created_at.desc(), Expense.id.desc())
            ).scalars().all(),
        )
        return [_expense_record(r) for r in rows]

    async def insert_expense(self, draft: ExpenseDraft) -> ExpenseRecord:
        row = Expense(
            group_id=draft.group_id,
            created_by=draft.created_by,
            description=draft.description,
            amount=draft.amount.to_decimal(),
            date=draft.date,
        )

        def action():
            self._session.add(row)
            return row

        self._write("insert_expense", action)
        self._session.refresh(row)
        return _expense_record(row)

    async def delete_expense(self, expense_id: int) -> None:
        def action():
            row = self._session.get(Expense, expense_id)
            if row is not None:
                # ORM cascade removes the splits even where the backend
                # does not enforce ON DELETE CASCADE.
                self._session.delete(row)

        self._write("delete_expense", action)

    async def insert_splits(
            self, expense_id: int, splits: Sequence[SplitDraft],
    ) -> list[SplitRecord]:
        rows = [
            Split(
                expense_id=expense_id,
                profile_id=s.member_id,
                amount=s.amount.to_decimal(),
                share=_share_to_db(s.share),
            )
            for s in splits
        ]

        def action():
            self._session.add_all(rows)
            return rows

        self._write("insert_splits", action)
        # The parent's splits collection was loaded before these rows existed.
        parent = self._session.get(Expense, expense_id)
        if parent is not None:
            self._session.expire(parent, ["splits"])
        return [_split_record(r) for r in rows]

    async def list_member_splits(self, group_id: int, member_id: int) -> list[SplitRecord]:
        rows = self._read(
            "list_member_splits",
            lambda: self._session.execute(
                select(Split)
                .join(Expense, Expense.id == Split.expense_id)
                .where(Expense.group_id == group_id, Split.profile_id == member_id)
                .order_by(Split.expense_id)
            ).scalars().all(),
        )
        return [_split_record(r) for r in rows]

    async def delete_splits(self, member_id: int, expense_ids: Iterable[int]) -> int:
        ids = list(expense_ids)
        if not ids:
            return 0

        def action():
            result = self._session.execute(
                delete(Split).where(
                    Split.profile_id == member_id,
                    Split.expense_id.in_(ids),
                )
            )
            return result.rowcount

        deleted = self._write("delete_splits", action)
        for expense_id in ids:
            parent = self._session.get(Expense, expense_id)
            if parent is not None:
                self._session.expire(parent, ["splits"])
        return deleted

    # ── Settlements ────────────────────────────────────────────────────────

    async def insert_settlement(self, draft: SettlementDraft) -> SettlementRecord:
        row = Settlement(
            group_id=draft.group_id,
            paid_by=draft.paid_by,
            paid_to=draft.paid_to,
            amount=draft.amount.to_decimal(),
            expense_id=draft.expense_id,
            note=draft.note,
        )

        def action():
            self._session.add(row)
            return row

        self._write("insert_settlement", action)
        self._session.refresh(row)
        return _settlement_record(row)

    async def list_settlements(self, group_id: int) -> list[SettlementRecord]:
        rows = self._read(
            "list_settlements",
            lambda: self._session.execute(
                select(Settlement)
                .where(Settlement.group_id == group_id)
                .order_by(Settlement.created_at.desc(), Settlement.id.desc())
            ).scalars().all(),
        )
        return [_settlement_record(r) for r in rows]
