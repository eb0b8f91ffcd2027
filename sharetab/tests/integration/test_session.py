"""
tests/integration/test_session.py — Bearer token verification and profile creation.

What this file proves:
  - Missing, malformed, forged and expired tokens are rejected with 401
  - The first authenticated request creates a profile; later requests reuse it
  - Unknown routes keep their HTTP status instead of becoming a 500
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select

from sharetab.app.errors import ErrorCode
from sharetab.app.extensions import db

from .conftest import auth_headers, sign_in, token_for


def _error_code(resp) -> str:
    return resp.get_json()["error"]["code"]


def test_missing_token(client):
    resp = client.get("/api/v1/groups/")
    assert resp.status_code == 401
    assert _error_code(resp) == ErrorCode.TOKEN_MISSING


def test_malformed_header(client):
    resp = client.get("/api/v1/groups/", headers={"Authorization": "Token abc"})
    assert resp.status_code == 401
    assert _error_code(resp) == ErrorCode.TOKEN_INVALID


def test_forged_token(client):
    token = token_for("auth|mallory", secret="some-other-secret-that-is-long-enough")
    resp = client.get("/api/v1/groups/", headers=auth_headers(token))
    assert resp.status_code == 401
    assert _error_code(resp) == ErrorCode.TOKEN_INVALID


def test_expired_token(client):
    token = token_for("auth|alice", expires_in=timedelta(minutes=-1))
    resp = client.get("/api/v1/groups/", headers=auth_headers(token))
    assert resp.status_code == 401
    assert _error_code(resp) == ErrorCode.TOKEN_EXPIRED


def test_blank_subject(client):
    resp = client.get("/api/v1/groups/", headers=auth_headers(token_for("  ")))
    assert resp.status_code == 401
    assert _error_code(resp) == ErrorCode.TOKEN_INVALID


def test_profile_created_once(client, app):
    from sharetab.app.models.profile import Profile

    alice = sign_in(client, app, "Alice")
    again = client.get("/api/v1/groups/", headers=alice.headers)
    assert again.status_code == 200

    with app.app_context():
        count = db.session.execute(select(func.count()).select_from(Profile)).scalar_one()
        profile = db.session.get(Profile, alice.id)
        assert count == 1
        assert profile.display_name == "Alice"
        assert profile.email == "alice@test.com"


def test_unknown_route_is_404(client, app):
    alice = sign_in(client, app, "Alice")
    resp = client.get("/api/v1/nowhere", headers=alice.headers)
    assert resp.status_code == 404
    assert _error_code(resp) == "NOT_FOUND"
