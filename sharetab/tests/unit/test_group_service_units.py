"""
tests/unit/test_group_service_units.py — Unit tests for group_service.

What this file proves:
  - The creator of a group becomes its admin
  - Reads are limited to members (403 for outsiders, 404 for unknown groups)
  - Invites add existing profiles or new placeholders, and are idempotent
  - Only admins can grant the admin role
"""

from __future__ import annotations

import asyncio

import pytest

from sharetab.app.errors import AppError, ErrorCode, PersistError
from sharetab.app.services import group_service


def _invite(h, caller, data):
    return asyncio.run(group_service.invite_member(h.store, h.as_(caller), h.group.id, data))


def test_create_group_makes_creator_admin(household):
    h = household
    group = asyncio.run(group_service.create_group(h.store, h.as_(h.bob), "Road trip"))

    assert group["name"] == "Road trip"
    assert group["created_by"] == h.bob.id
    assert [(m["id"], m["role"]) for m in group["members"]] == [(h.bob.id, "admin")]
    assert group["members"][0]["authenticated"] is True


def test_create_group_store_failure(household):
    h = household
    h.store.fail_on.add("insert_membership")
    with pytest.raises(PersistError):
        asyncio.run(group_service.create_group(h.store, h.as_(h.bob), "Road trip"))


def test_list_groups_only_shows_callers_groups(household):
    h = household
    newer = asyncio.run(group_service.create_group(h.store, h.as_(h.bob), "Road trip"))

    bobs = asyncio.run(group_service.list_groups(h.store, h.as_(h.bob)))
    carols = asyncio.run(group_service.list_groups(h.store, h.as_(h.carol)))

    assert [g["id"] for g in bobs] == [newer["id"], h.group.id]
    assert [g["id"] for g in carols] == [h.group.id]
    assert "members" not in bobs[0]


def test_get_group_lists_members(household):
    h = household
    group = asyncio.run(group_service.get_group(h.store, h.as_(h.carol), h.group.id))

    roles = {m["id"]: m["role"] for m in group["members"]}
    assert roles == {h.alice.id: "admin", h.bob.id: "member", h.carol.id: "member"}


def test_get_group_forbidden_for_outsiders(household):
    h = household
    outsider = h.store.add_profile("Mallory")
    with pytest.raises(AppError) as exc_info:
        asyncio.run(group_service.get_group(h.store, h.as_(outsider), h.group.id))
    assert exc_info.value.http_status == 403


def test_get_unknown_group(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        asyncio.run(group_service.get_group(h.store, h.as_(h.alice), 4242))
    assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND
    assert exc_info.value.http_status == 404


def test_invite_existing_profile(household):
    h = household
    dave = h.store.add_profile("Dave")

    member, created = _invite(h, h.bob, {"profile_id": dave.id})

    assert created is True
    assert member["id"] == dave.id
    assert member["role"] == "member"
    assert (h.group.id, dave.id) in h.store.memberships


def test_invite_is_idempotent(household):
    h = household
    member, created = _invite(h, h.alice, {"profile_id": h.carol.id, "role": "admin"})

    assert created is False
    assert member["role"] == "member"
    assert "insert_membership" not in h.store.calls


def test_invite_placeholder(household):
    h = household
    member, created = _invite(h, h.bob, {"display_name": "  Grandma ", "email": "gran@example.com"})

    assert created is True
    assert member["display_name"] == "Grandma"
    assert member["is_placeholder"] is True
    assert member["authenticated"] is False
    assert h.store.profiles[member["id"]].email == "gran@example.com"


def test_invite_unknown_profile(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        _invite(h, h.alice, {"profile_id": 9999})
    assert exc_info.value.code == ErrorCode.PROFILE_NOT_FOUND
    assert exc_info.value.field == "profile_id"


def test_only_admins_grant_admin_role(household):
    h = household
    dave = h.store.add_profile("Dave")

    with pytest.raises(AppError) as exc_info:
        _invite(h, h.bob, {"profile_id": dave.id, "role": "admin"})
    assert exc_info.value.code == ErrorCode.FORBIDDEN

    member, _ = _invite(h, h.alice, {"profile_id": dave.id, "role": "admin"})
    assert member["role"] == "admin"


def test_outsiders_cannot_invite(household):
    h = household
    outsider = h.store.add_profile("Mallory")
    with pytest.raises(AppError) as exc_info:
        _invite(h, outsider, {"display_name": "Friend"})
    assert exc_info.value.code == ErrorCode.FORBIDDEN
