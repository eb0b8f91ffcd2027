"""Initial schema — all tables, constraints, and indexes.

Revision: 001_initial_schema
Created:  2026-10-17

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  Tables in FK dependency order (profiles → groups → memberships → expenses
  → expense_splits, settlements), then indexes.

The membership role is stored as VARCHAR with a CHECK constraint
(native_enum=False on the model), so no PostgreSQL enum type is created.

ON DELETE policies:
  groups.created_by            → SET NULL  (group outlives its creator)
  memberships.*                → RESTRICT  (remove memberships explicitly)
  expenses.*                   → RESTRICT  (cannot delete group/profile with expenses)
  expense_splits.expense_id    → CASCADE   (splits owned by expense)
  expense_splits.profile_id    → RESTRICT
  settlements.*                → RESTRICT
  settlements.expense_id       → no FK     (link survives expense deletion)

There is no split-sum trigger: removing a member purges that member's
splits, which leaves the remaining splits short of the expense amount.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:
    """Apply the full initial schema."""

    # ── Step 1: profiles ───────────────────────────────────────────────────
    # auth_user_id NULL = placeholder member.

    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("auth_user_id", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("venmo_username", sa.String(100), nullable=True),
        sa.Column("cashapp_username", sa.String(100), nullable=True),
        sa.Column("paypal_username", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_profiles"),
        sa.UniqueConstraint("auth_user_id", name="uq_profiles_auth_user_id"),
        sa.CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_profiles_display_name_nonempty",
        ),
    )

    # ── Step 2: groups ─────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="SET NULL", name="fk_groups_creator"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── Step 3: memberships ────────────────────────────────────────────────
    # UNIQUE(profile_id, group_id). Role is 'admin' or 'member'.

    op.create_table(
        "memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "profile_id",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT", name="fk_memberships_profile"),
            nullable=False,
        ),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "role",
            sa.String(6),
            nullable=False,
            server_default="member",
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_memberships"),
        sa.UniqueConstraint("profile_id", "group_id", name="uq_memberships_profile_group"),
        sa.CheckConstraint(
            "role IN ('admin', 'member')",
            name="membership_role_enum",
        ),
    )

    # ── Step 4: expenses ───────────────────────────────────────────────────

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_expenses_group"),
            nullable=False,
        ),
        sa.Column(
            "created_by",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT", name="fk_expenses_creator"),
            nullable=False,
        ),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.CheckConstraint(
            "LENGTH(TRIM(description)) > 0",
            name="ck_expenses_description_nonempty",
        ),
    )

    # ── Step 5: expense_splits ─────────────────────────────────────────────
    # Zero amounts are allowed (a 2-cent expense split three ways).

    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE", name="fk_expense_splits_expense"),
            nullable=False,
        ),
        sa.Column(
            "profile_id",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT", name="fk_expense_splits_profile"),
            nullable=False,
        ),
        sa.Column("share", sa.Numeric(9, 8), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_expense_splits"),
        sa.UniqueConstraint(
            "expense_id", "profile_id", name="uq_expense_splits_expense_profile",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_expense_splits_amount_nonnegative"),
        sa.CheckConstraint(
            "share IS NULL OR (share >= 0 AND share <= 1)",
            name="ck_expense_splits_share_range",
        ),
    )

    # ── Step 6: settlements ────────────────────────────────────────────────
    # Self-settlement is forbidden at the DB level (also enforced in service).

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_settlements_group"),
            nullable=False,
        ),
        sa.Column(
            "paid_by",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT", name="fk_settlements_payer"),
            nullable=False,
        ),
        sa.Column(
            "paid_to",
            sa.Integer(),
            sa.ForeignKey("profiles.id", ondelete="RESTRICT", name="fk_settlements_recipient"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_settlements"),
        sa.CheckConstraint("amount > 0", name="ck_settlements_amount_positive"),
        sa.CheckConstraint(
            "paid_by <> paid_to",
            name="ck_settlements_no_self_settlement",
        ),
    )

    # ── Step 7: Indexes ────────────────────────────────────────────────────
    # Names follow SQLAlchemy's ix_<table>_<column> default so autogenerate
    # sees them as matching the models' index=True columns.

    op.create_index("ix_memberships_profile_id", "memberships", ["profile_id"])
    op.create_index("ix_memberships_group_id", "memberships", ["group_id"])
    op.create_index("ix_expenses_group_id", "expenses", ["group_id"])
    op.create_index("ix_expense_splits_expense_id", "expense_splits", ["expense_id"])
    op.create_index("ix_expense_splits_profile_id", "expense_splits", ["profile_id"])
    op.create_index("ix_settlements_group_id", "settlements", ["group_id"])
    op.create_index("ix_settlements_expense_id", "settlements", ["expense_id"])


def downgrade() -> None:
    """
    Drop all objects created in upgrade(), in reverse dependency order.

    Provided for local development reset. In production prefer a corrective
    migration over a rollback.
    """

    op.drop_index("ix_settlements_expense_id",    table_name="settlements")
    op.drop_index("ix_settlements_group_id",      table_name="settlements")
    op.drop_index("ix_expense_splits_profile_id", table_name="expense_splits")
    op.drop_index("ix_expense_splits_expense_id", table_name="expense_splits")
    op.drop_index("ix_expenses_group_id",         table_name="expenses")
    op.drop_index("ix_memberships_group_id",      table_name="memberships")
    op.drop_index("ix_memberships_profile_id",    table_name="memberships")

    op.drop_table("settlements")
    op.drop_table("expense_splits")
    op.drop_table("expenses")
    op.drop_table("memberships")
    op.drop_table("groups")
    op.drop_table("profiles")
