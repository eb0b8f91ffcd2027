"""
tests/unit/test_profile_service_units.py — Unit tests for profile_service.

What this file proves:
  - A profile is created once per auth identity and reused afterwards
  - The display name falls back to the email's local part, then "Member"
  - Only admins edit placeholders, and only placeholders can be edited
"""

from __future__ import annotations

import asyncio

import pytest

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.records import Role
from sharetab.app.services import profile_service


# ── get_or_create_profile ──────────────────────────────────────────────────

def test_first_call_creates_profile(store):
    profile = asyncio.run(profile_service.get_or_create_profile(
        store, "user-1", display_name="Alice", email="alice@example.com",
    ))

    assert profile.display_name == "Alice"
    assert profile.auth_user_id == "user-1"
    assert not profile.is_placeholder


def test_second_call_reuses_profile(store):
    first = asyncio.run(profile_service.get_or_create_profile(store, "user-1", "Alice"))
    again = asyncio.run(profile_service.get_or_create_profile(store, "user-1", "Renamed"))

    assert again.id == first.id
    assert again.display_name == "Alice"
    assert len(store.profiles) == 1


@pytest.mark.parametrize("display_name,email,expected", [
    (None, "bob@example.com", "bob"),
    ("   ", "bob@example.com", "bob"),
    (None, None, "Member"),
    ("", "", "Member"),
])
def test_display_name_fallbacks(store, display_name, email, expected):
    profile = asyncio.run(profile_service.get_or_create_profile(
        store, "user-x", display_name=display_name, email=email,
    ))
    assert profile.display_name == expected


def test_profile_dict_marks_placeholders(store):
    placeholder = store.add_profile("Grandma", auth_user_id=None)
    assert profile_service.profile_dict(placeholder)["is_placeholder"] is True


# ── update_placeholder ─────────────────────────────────────────────────────

@pytest.fixture
def grandma(household):
    profile = household.store.add_profile("Grandma", auth_user_id=None)
    household.store._join(household.group.id, profile.id, Role.MEMBER)
    return profile


def _update(h, caller, profile_id, data):
    return asyncio.run(profile_service.update_placeholder(
        h.store, h.as_(caller), h.group.id, profile_id, data,
    ))


def test_admin_updates_placeholder(household, grandma):
    h = household
    updated = _update(h, h.alice, grandma.id, {"display_name": "Nana", "venmo_username": "nana"})

    assert updated.display_name == "Nana"
    assert updated.venmo_username == "nana"
    assert h.store.profiles[grandma.id].display_name == "Nana"


def test_empty_update_returns_profile_unchanged(household, grandma):
    h = household
    assert _update(h, h.alice, grandma.id, {}) == grandma
    assert "update_profile" not in h.store.calls


def test_non_admin_cannot_update(household, grandma):
    h = household
    with pytest.raises(AppError) as exc_info:
        _update(h, h.bob, grandma.id, {"display_name": "Nana"})
    assert exc_info.value.code == ErrorCode.FORBIDDEN


def test_linked_profile_cannot_be_updated(household):
    h = household
    with pytest.raises(AppError) as exc_info:
        _update(h, h.alice, h.bob.id, {"display_name": "Robert"})
    assert exc_info.value.code == ErrorCode.NOT_A_PLACEHOLDER
    assert exc_info.value.http_status == 422


def test_profile_outside_group_not_found(household):
    h = household
    stranger = h.store.add_profile("Stranger", auth_user_id=None)
    with pytest.raises(AppError) as exc_info:
        _update(h, h.alice, stranger.id, {"display_name": "X"})
    assert exc_info.value.code == ErrorCode.MEMBER_NOT_FOUND
