"""
models/split.py — Expense split table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float. Zero is allowed: an equal
    split of $0.02 across three members leaves one member with $0.00.
  - `share` is advisory (for display). NULL means "derive from amount/total".
  - expense_id is ON DELETE CASCADE — splits are owned by their expense.
  - profile_id is ON DELETE RESTRICT.
  - UNIQUE(expense_id, profile_id) prevents the same member appearing twice
    in one expense's splits.

The sum check (splits total the expense amount) is enforced by the
allocator before the write, not here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db


class Split(db.Model):
    __tablename__ = "expense_splits"

    __table_args__ = (
        UniqueConstraint("expense_id", "profile_id", name="uq_expense_splits_expense_profile"),
        CheckConstraint("amount >= 0", name="ck_expense_splits_amount_nonnegative"),
        CheckConstraint(
            "share IS NULL OR (share >= 0 AND share <= 1)",
            name="ck_expense_splits_share_range",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Fraction of the expense total, 0..1, stored to 8 places.
    share: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 8),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="splits",
    )

    profile: Mapped["Profile"] = relationship(  # noqa: F821
        "Profile",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Split id={self.id} "
            f"expense_id={self.expense_id} "
            f"profile_id={self.profile_id} "
            f"amount={self.amount}>"
        )
