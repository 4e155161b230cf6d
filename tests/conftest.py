"""
Pytest fixtures for Profile Curator tests. Everything runs against the
in-memory store with fake clocks; no relay or Redis connections are made.
"""

import json
import os
from datetime import datetime, timedelta, timezone

# Must be set before profile_curator.core.config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("INDEXER_ENABLED", "false")

import pytest  # noqa: E402

from profile_curator.services.store import InMemoryProfileStore  # noqa: E402

RELAYS = ["wss://relay.one", "wss://relay.two"]

COMPLETE = {"picture": "https://img/p.png", "name": "alice", "about": "hi"}


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def pubkey_for(n: int) -> str:
    return f"{n:064x}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def utc_clock():
    return FakeUtcClock()


@pytest.fixture
def store():
    return InMemoryProfileStore(timeout=1.0)


@pytest.fixture
def make_event():
    """Factory for raw kind-0 events as a relay would deliver them."""

    def _make(n: int = 1, metadata=None, **overrides) -> dict:
        content = metadata if isinstance(metadata, str) else json.dumps(metadata or {})
        event = {
            "id": f"{n:064x}"[::-1],
            "pubkey": pubkey_for(n),
            "created_at": 1700000000 + n,
            "kind": 0,
            "tags": [],
            "content": content,
            "sig": "0" * 128,
            "relay": RELAYS[0],
        }
        event.update(overrides)
        return event

    return _make


@pytest.fixture
def add_profile(store):
    """Upsert a profile straight into the store with the given flags."""

    async def _add(n: int, picture=True, username=True, bio=True, last_seen=None):
        from profile_curator.models.profile import completeness_score

        await store.upsert_profile(
            pubkey=pubkey_for(n),
            has_picture=picture,
            has_username=username,
            has_bio=bio,
            score=completeness_score(picture, username, bio),
            relay_list=RELAYS,
            last_seen=last_seen or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        )
        return pubkey_for(n)

    return _add
