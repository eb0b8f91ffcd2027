"""
models/profile.py — Profile (group member) table definition.

No business logic. No imports from services or routes.

A profile with auth_user_id = NULL is a placeholder member: someone added to
a group by name who has not signed in. Placeholders are created and edited
by group admins or through the invite flow.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sharetab.app.extensions import db


class Profile(db.Model):
    __tablename__ = "profiles"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(display_name)) > 0",
            name="ck_profiles_display_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Not unique: placeholders may share an email until they claim a login.
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Subject claim of the external auth provider. NULL for placeholders.
    auth_user_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )

    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Payment handles, shown when settling up.
    venmo_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cashapp_username: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paypal_username: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["Membership"]] = relationship(  # noqa: F821
        "Membership",
        back_populates="profile",
    )

    @property
    def is_placeholder(self) -> bool:
        return self.auth_user_id is None

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Profile id={self.id} display_name={self.display_name!r}>"
