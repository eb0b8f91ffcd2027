"""
services/profile_service.py — Profiles and placeholder members.

A profile is created the first time an authenticated identity calls the
API (get_or_create_profile). Placeholder profiles have no auth_user_id;
they are created through the invite flow and edited only by group admins.

Layer rules:
  - No Flask imports. Receives a store and plain values.
  - Commits are the route's responsibility.
"""

from __future__ import annotations

import logging

from sharetab.app.errors import AppError, ErrorCode, PersistError
from sharetab.app.records import ProfileRecord
from sharetab.app.services.expense_coordinator import require_group_member
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


def profile_dict(profile: ProfileRecord) -> dict:
    return {
        "id": profile.id,
        "display_name": profile.display_name,
        "email": profile.email,
        "is_placeholder": profile.is_placeholder,
        "avatar_url": profile.avatar_url,
        "venmo_username": profile.venmo_username,
        "cashapp_username": profile.cashapp_username,
        "paypal_username": profile.paypal_username,
    }


async def get_or_create_profile(
        store: LedgerStore,
        auth_user_id: str,
        display_name: str | None = None,
        email: str | None = None,
) -> ProfileRecord:
    """
    Returns the profile linked to `auth_user_id`, creating it on first use.

    The display name falls back to the local part of the email, then to
    "Member".
    """
    try:
        profile = await store.get_profile_by_auth(auth_user_id)
        if profile is not None:
            return profile
        name = (display_name or "").strip() or (email or "").split("@")[0].strip() or "Member"
        profile = await store.insert_profile(name, email=email, auth_user_id=auth_user_id)
    except StoreError as exc:
        raise PersistError(f"Could not resolve profile: {exc}") from exc

    logger.info("created profile %s for auth user %s", profile.id, auth_user_id)
    return profile


async def update_placeholder(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
        profile_id: int,
        data: dict,
) -> ProfileRecord:
    """
    Edits a placeholder member's details.

    Raises:
        AppError(FORBIDDEN, 403)          -- caller is not an admin of the group.
        AppError(MEMBER_NOT_FOUND, 404)   -- profile is not in the group.
        AppError(NOT_A_PLACEHOLDER, 422)  -- profile is linked to a login.
    """
    caller = await require_group_member(store, group_id, context.profile_id)
    if not caller.is_admin:
        raise AppError(ErrorCode.FORBIDDEN, "Only group admins can edit placeholder members.", 403)

    try:
        membership = await store.get_membership(group_id, profile_id)
        profile = await store.get_profile(profile_id)
    except StoreError as exc:
        raise PersistError(f"Could not load profile {profile_id}: {exc}") from exc

    if membership is None or profile is None:
        raise AppError(
            ErrorCode.MEMBER_NOT_FOUND,
            f"Profile {profile_id} is not a member of group {group_id}.",
            404,
        )
    if not profile.is_placeholder:
        raise AppError(
            ErrorCode.NOT_A_PLACEHOLDER,
            "Only placeholder members can be edited by an admin.",
            422,
        )
    if not data:
        return profile

    try:
        return await store.update_profile(profile_id, **data)
    except StoreError as exc:
        raise PersistError(f"Could not update profile {profile_id}: {exc}") from exc
