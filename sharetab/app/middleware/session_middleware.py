"""
middleware/session_middleware.py — Resolving the caller's session context.

The @require_session decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies the JWT issued by the external auth provider (PyJWT,
     AUTH_JWT_SECRET / AUTH_JWT_ALGORITHM, audience when configured)
  3. Takes the `sub` claim as the provider's user id
  4. Fetches the matching profile, creating it on first use
  5. Attaches SessionContext(profile_id, auth_user_id) to flask.g

Token issuance and refresh belong to the auth provider; this service only
verifies.

Strict responsibility boundary:
  - Middleware = authentication (401). Services = authorization (403).
  - Services receive the SessionContext as a plain argument and never
    read flask.g themselves.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad payload
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
"""

from __future__ import annotations

import asyncio
import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from sharetab.app.errors import AppError, ErrorCode
from sharetab.app.extensions import db
from sharetab.app.services.profile_service import get_or_create_profile
from sharetab.app.session_context import SessionContext
from sharetab.app.store.sql_store import SqlLedgerStore


def current_store() -> SqlLedgerStore:
    """The store for this request, bound to the Flask-SQLAlchemy session."""
    return SqlLedgerStore(db.session)


def require_session(f: Callable) -> Callable:
    """
    Route decorator that resolves the caller's SessionContext.

    Usage:
        @bp.route("/groups")
        @require_session
        def list_groups():
            context = g.session_context
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _resolve_session()
        return f(*args, **kwargs)

    return decorated


def _decode_token() -> dict:
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    audience = current_app.config.get("AUTH_JWT_AUDIENCE") or None
    try:
        return jwt.decode(
            parts[1],
            current_app.config["AUTH_JWT_SECRET"],
            algorithms=[current_app.config.get("AUTH_JWT_ALGORITHM", "HS256")],
            audience=audience,
            options={"verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, malformed token, wrong audience, etc.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )


def _resolve_session() -> None:
    """
    Performs the full authentication sequence and sets g.session_context.

    Separated from the decorator wrapper so tests can call it directly
    inside a request context.
    """
    payload = _decode_token()

    # ── Step 4: The provider's user id ────────────────────────────────────
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.strip():
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is missing the required 'sub' claim.",
            401,
        )

    # ── Step 5: Profile lookup (created on first sign-in) ─────────────────
    profile = asyncio.run(get_or_create_profile(
        current_store(),
        auth_user_id=sub,
        display_name=payload.get("name"),
        email=payload.get("email"),
    ))
    db.session.commit()

    g.session_context = SessionContext(profile_id=profile.id, auth_user_id=sub)
