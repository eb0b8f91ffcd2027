"""
models/membership.py — Membership junction table definition.

No business logic. No imports from services or routes.

FK policy: profile_id and group_id both ON DELETE RESTRICT — neither a
profile nor a group can be deleted while memberships exist. Memberships are
removed through the coordinator, which purges the member's splits first.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db
from sharetab.app.records import Role


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'admin'), not names ('ADMIN')."""
    return [member.value for member in enum_cls]


class Membership(db.Model):
    __tablename__ = "memberships"

    __table_args__ = (
        # A profile can only belong to a group once.
        UniqueConstraint("profile_id", "group_id", name="uq_memberships_profile_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    profile_id: Mapped[int] = mapped_column(
        ForeignKey("profiles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    role: Mapped[Role] = mapped_column(
        Enum(
            Role,
            name="membership_role_enum",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=Role.MEMBER,
        server_default=Role.MEMBER.value,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    profile: Mapped["Profile"] = relationship(  # noqa: F821
        "Profile",
        back_populates="memberships",
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Membership id={self.id} "
            f"profile_id={self.profile_id} "
            f"group_id={self.group_id} "
            f"role={self.role.value}>"
        )
