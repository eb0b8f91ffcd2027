"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against TEST_DATABASE_URL, or an in-memory SQLite database
    when it is unset.
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Tokens are minted here with PyJWT and TestingConfig.AUTH_JWT_SECRET, the
    way the external auth provider would sign them.

Helper functions (not fixtures) are provided for common operations:
  - token_for(sub, ...)        → signed bearer token
  - auth_headers(token)        → {"Authorization": "Bearer <token>"}
  - sign_in(client, app, ...)  → Caller with token + profile id
  - make_group(client, ...)    → group dict
  - add_member(...)            → HTTP response
  - make_expense(...)          → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test without fixture parameterization overhead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select, text

from sharetab.app import create_app
from sharetab.app.extensions import db as _db
from sharetab.config import TestingConfig


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire test session.

    Steps:
      1. Create app with TestingConfig.
      2. Run db.create_all() to create all tables.
      3. Yield the app for the test session.
      4. Drop all tables at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """
    Deletes all rows between tests in FK-safe order.

    Delete order respects FK constraints: splits before expenses, everything
    that references a profile before profiles.
    """
    yield  # run the test

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test

        with _db.engine.begin() as conn:
            conn.execute(text("DELETE FROM expense_splits"))
            conn.execute(text("DELETE FROM settlements"))
            conn.execute(text("DELETE FROM expenses"))
            conn.execute(text("DELETE FROM memberships"))
            conn.execute(text("DELETE FROM groups"))
            conn.execute(text("DELETE FROM profiles"))


# ═══════════════════════════════════════════════════════════════════════════
# Client fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Caller:
    token: str
    id: int
    sub: str

    @property
    def headers(self) -> dict:
        return auth_headers(self.token)


def token_for(
    sub: str,
    name: str | None = None,
    email: str | None = None,
    expires_in: timedelta = timedelta(minutes=15),
    secret: str = TestingConfig.AUTH_JWT_SECRET,
) -> str:
    """Signs a token the way the auth provider does."""
    payload: dict = {"sub": sub, "exp": datetime.now(timezone.utc) + expires_in}
    if name is not None:
        payload["name"] = name
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=TestingConfig.AUTH_JWT_ALGORITHM)


def auth_headers(token: str) -> dict:
    """Returns the Authorization header dict for use in test requests."""
    return {"Authorization": f"Bearer {token}"}


def sign_in(client, app, name: str) -> Caller:
    """
    Makes a first authenticated request for `name` (creating their profile)
    and returns the token together with the new profile id.
    """
    from sharetab.app.models.profile import Profile

    sub = f"auth|{name.lower()}"
    token = token_for(sub, name=name, email=f"{name.lower()}@test.com")
    resp = client.get("/api/v1/groups/", headers=auth_headers(token))
    assert resp.status_code == 200, f"sign_in failed: {resp.get_json()}"

    with app.app_context():
        profile_id = _db.session.execute(
            select(Profile.id).where(Profile.auth_user_id == sub)
        ).scalar_one()
    return Caller(token=token, id=profile_id, sub=sub)


def make_group(client, caller: Caller, name: str = "Test Group") -> dict:
    """
    Creates a group and returns the group data dict.
    The caller becomes the group admin and first member.
    """
    resp = client.post("/api/v1/groups/", json={"name": name}, headers=caller.headers)
    assert resp.status_code == 201, f"make_group failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, caller: Caller, group_id: int, profile_id: int | None = None,
               display_name: str | None = None, role: str | None = None):
    """Adds an existing profile or a new placeholder. Returns the HTTP response."""
    payload: dict = {}
    if profile_id is not None:
        payload["profile_id"] = profile_id
    if display_name is not None:
        payload["display_name"] = display_name
    if role is not None:
        payload["role"] = role
    return client.post(
        f"/api/v1/groups/{group_id}/members",
        json=payload,
        headers=caller.headers,
    )


def make_expense(
    client,
    caller: Caller,
    group_id: int,
    amount: str,
    participants: list[int],
    description: str = "Test Expense",
    split_mode: str = "equal",
    **policy,
):
    """
    Creates an expense paid by `caller` and returns the HTTP response.
    Pass weights= / percentages= / amounts= for the non-equal modes.
    """
    payload: dict = {
        "description": description,
        "amount": amount,
        "split_mode": split_mode,
        "participants": participants,
        **policy,
    }
    return client.post(
        f"/api/v1/groups/{group_id}/expenses",
        json=payload,
        headers=caller.headers,
    )
