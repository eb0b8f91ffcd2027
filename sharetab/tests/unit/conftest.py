"""
tests/unit/conftest.py — Shared fixtures for DB-free unit tests.

Unit test constraints:
  - No database, no Flask application context, no auth context.
  - Services and the coordinator run against FakeLedgerStore; coroutines
    are driven with asyncio.run(), the same way the routes drive them.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from sharetab.app.records import GroupRecord, ProfileRecord
from sharetab.app.session_context import SessionContext

from .fake_store import FakeLedgerStore


@dataclass
class Household:
    store: FakeLedgerStore
    group: GroupRecord
    alice: ProfileRecord   # admin
    bob: ProfileRecord
    carol: ProfileRecord

    def as_(self, profile: ProfileRecord) -> SessionContext:
        return SessionContext(profile_id=profile.id, auth_user_id=profile.auth_user_id)


@pytest.fixture
def store() -> FakeLedgerStore:
    return FakeLedgerStore()


@pytest.fixture
def household(store) -> Household:
    """Alice (admin), Bob and Carol in one group."""
    alice = store.add_profile("Alice")
    bob = store.add_profile("Bob")
    carol = store.add_profile("Carol")
    group = store.add_group("Flat 4B", alice, bob, carol)
    return Household(store=store, group=group, alice=alice, bob=bob, carol=carol)
