"""
services/group_service.py — Group and membership business logic.

Authorization rules:
  - Reading a group:      members only (FORBIDDEN 403, not 404)
  - Inviting a member:    any member; granting the admin role needs an admin
  - Removing a member:    see expense_coordinator.remove_member()
  - Editing placeholders: see profile_service.update_placeholder()

Invites are idempotent: inviting someone who is already in the group
returns their existing membership.

Layer rules:
  - No Flask imports. Receives a store and a SessionContext.
  - Commits are the route's responsibility.
"""

from __future__ import annotations

import logging

from sharetab.app.errors import AppError, ErrorCode, PersistError
from sharetab.app.records import GroupRecord, MembershipRecord, ProfileRecord, Role
from sharetab.app.services.expense_coordinator import require_group_member
from sharetab.app.services.profile_service import profile_dict
from sharetab.app.session_context import SessionContext
from sharetab.app.store.ledger_store import LedgerStore, StoreError

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────

def _group_dict(group: GroupRecord) -> dict:
    return {
        "id": group.id,
        "name": group.name,
        "created_by": group.created_by,
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }


def _member_dict(membership: MembershipRecord, profile: ProfileRecord | None) -> dict:
    member = profile_dict(profile) if profile else {"id": membership.member_id}
    member["role"] = membership.role.value
    member["authenticated"] = membership.authenticated
    return member


async def _members(store: LedgerStore, group_id: int) -> list[dict]:
    memberships = await store.list_memberships(group_id)
    return [_member_dict(m, await store.get_profile(m.member_id)) for m in memberships]


# ── Public service functions ───────────────────────────────────────────────

async def create_group(store: LedgerStore, context: SessionContext, name: str) -> dict:
    """
    Creates a group. The creator becomes its first member, as admin.
    """
    try:
        group = await store.insert_group(name, context.profile_id)
        await store.insert_membership(group.id, context.profile_id, Role.ADMIN)
        members = await _members(store, group.id)
    except StoreError as exc:
        raise PersistError(f"Could not create group: {exc}") from exc

    logger.info("group %s created by profile %s", group.id, context.profile_id)
    return {**_group_dict(group), "members": members}


async def list_groups(store: LedgerStore, context: SessionContext) -> list[dict]:
    """Groups the caller belongs to, newest first, without member lists."""
    try:
        groups = await store.list_groups_for(context.profile_id)
    except StoreError as exc:
        raise PersistError(f"Could not load groups: {exc}") from exc
    return [_group_dict(g) for g in groups]


async def get_group(store: LedgerStore, context: SessionContext, group_id: int) -> dict:
    """Group details with the current member list."""
    await require_group_member(store, group_id, context.profile_id)
    try:
        group = await store.get_group(group_id)
        members = await _members(store, group_id)
    except StoreError as exc:
        raise PersistError(f"Could not load group {group_id}: {exc}") from exc
    return {**_group_dict(group), "members": members}


async def invite_member(
        store: LedgerStore,
        context: SessionContext,
        group_id: int,
        data: dict,
) -> tuple[dict, bool]:
    """
    Adds an existing profile, or a new placeholder, to the group.

    Args:
        data: Validated dict from InviteMemberSchema. Either profile_id, or
              display_name (+ optional email) for a placeholder. Optional role.

    Returns:
        (member dict, created). created is False when the profile was
        already a member.
    """
    caller = await require_group_member(store, group_id, context.profile_id)
    role = Role(data.get("role", Role.MEMBER.value))
    if role == Role.ADMIN and not caller.is_admin:
        raise AppError(ErrorCode.FORBIDDEN, "Only group admins can add other admins.", 403)

    try:
        profile_id = data.get("profile_id")
        if profile_id is not None:
            profile = await store.get_profile(profile_id)
            if profile is None:
                raise AppError(
                    ErrorCode.PROFILE_NOT_FOUND,
                    f"Profile {profile_id} does not exist.",
                    404,
                    field="profile_id",
                )
            existing = await store.get_membership(group_id, profile_id)
            if existing is not None:
                return _member_dict(existing, profile), False
        else:
            profile = await store.insert_profile(
                data["display_name"].strip(), email=data.get("email"),
            )
            logger.info("placeholder profile %s created for group %s", profile.id, group_id)

        membership = await store.insert_membership(group_id, profile.id, role)
    except StoreError as exc:
        raise PersistError(f"Could not add member: {exc}") from exc

    logger.info("profile %s joined group %s as %s", profile.id, group_id, role.value)
    return _member_dict(membership, profile), True
