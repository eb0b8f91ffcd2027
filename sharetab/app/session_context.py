"""
session_context.py — Per-request identity passed explicitly to services.

Resolved once per request by middleware/session_middleware.py and handed to
every service call that needs to know who is acting. Nothing caches it
process-wide.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SessionContext:
    profile_id: int
    auth_user_id: str | None = None
