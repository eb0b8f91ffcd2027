"""
records.py — Tagged row shapes exchanged with the data-access collaborator.

The store maps whatever its backend returns (ORM objects, dict rows) into
these frozen dataclasses at the boundary. The engine never sees loosely
typed maps or ORM instances, so the allocator, ledger and coordinator stay
testable without a database.

Drafts are the insert payloads; records are what comes back (with ids).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from fractions import Fraction

from sharetab.app.money import Money


class Role(str, enum.Enum):
    ADMIN  = "admin"
    MEMBER = "member"


# ── Records ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProfileRecord:
    id: int
    display_name: str
    email: str | None = None
    auth_user_id: str | None = None
    avatar_url: str | None = None
    venmo_username: str | None = None
    cashapp_username: str | None = None
    paypal_username: str | None = None

    @property
    def is_placeholder(self) -> bool:
        """A placeholder member has no linked authenticated identity."""
        return self.auth_user_id is None


@dataclass(frozen=True)
class GroupRecord:
    id: int
    name: str
    created_by: int | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class MembershipRecord:
    group_id: int
    member_id: int
    role: Role = Role.MEMBER
    authenticated: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class SplitRecord:
    expense_id: int
    member_id: int
    amount: Money
    share: Fraction | None = None

    def effective_share(self, total: Money) -> Fraction:
        """The stored share, or amount/total when none was recorded."""
        if self.share is not None:
            return self.share
        if total.is_zero:
            return Fraction(0)
        return Fraction(self.amount.cents, total.cents)


@dataclass(frozen=True)
class ExpenseRecord:
    id: int
    group_id: int
    created_by: int
    description: str
    amount: Money
    date: date | None = None
    created_at: datetime | None = None
    splits: tuple[SplitRecord, ...] = field(default_factory=tuple)

    @property
    def split_total(self) -> Money:
        return Money.sum(s.amount for s in self.splits)


@dataclass(frozen=True)
class SettlementRecord:
    id: int
    group_id: int
    paid_by: int
    paid_to: int
    amount: Money
    expense_id: int | None = None
    note: str | None = None
    created_at: datetime | None = None


# ── Insert payloads ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExpenseDraft:
    group_id: int
    created_by: int
    description: str
    amount: Money
    date: date | None = None


@dataclass(frozen=True)
class SplitDraft:
    member_id: int
    amount: Money
    share: Fraction | None = None


@dataclass(frozen=True)
class SettlementDraft:
    group_id: int
    paid_by: int
    paid_to: int
    amount: Money
    expense_id: int | None = None
    note: str | None = None
