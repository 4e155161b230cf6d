from datetime import datetime, timezone

import pytest
import redis.asyncio as redis

from profile_curator.core.errors import StoreUnavailable
from profile_curator.services.store.redis_store import RedisProfileStore, profile_from_hash, profile_to_hash

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
PUBKEY = "ab" * 32


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self

        return _record

    async def execute(self):
        self.client.executed.append(self.commands)
        return [self.client.hashes.get(args[0], {}) for name, args, _ in self.commands if name == "hgetall"]


class FakeRedis:
    """Records pipelined commands; serves canned ZREVRANGE/HGETALL replies."""

    def __init__(self, ranked=None, hashes=None):
        self.ranked = ranked or []
        self.hashes = hashes or {}
        self.executed = []
        self.transactions = []

    def pipeline(self, transaction=True):
        self.transactions.append(transaction)
        return FakePipeline(self)

    async def zrevrange(self, key, start, stop):
        return self.ranked[start : stop + 1]


class DownRedis:
    async def zrevrange(self, *args, **kwargs):
        raise redis.ConnectionError("Connection refused")


def test_hash_round_trip_keeps_fields():
    data = profile_to_hash(True, True, False, 0.7, ["wss://a"], T0)
    data["created_at"] = T0.isoformat()

    profile = profile_from_hash(PUBKEY, data)

    assert data["has_bio"] == "0"
    assert profile.pubkey == PUBKEY
    assert (profile.has_picture, profile.has_username, profile.has_bio) == (True, True, False)
    assert profile.score == 0.7
    assert profile.relay_list == ["wss://a"]
    assert profile.last_seen == T0


def test_missing_hash_is_none():
    assert profile_from_hash(PUBKEY, {}) is None


@pytest.mark.parametrize("field", ["last_seen", "created_at"])
def test_corrupt_timestamp_is_none(field):
    data = profile_to_hash(True, True, True, 1.0, ["wss://a"], T0)
    data["created_at"] = T0.isoformat()
    data[field] = "not-a-date"

    assert profile_from_hash(PUBKEY, data) is None


@pytest.mark.asyncio
async def test_qualifying_upsert_is_one_transaction_with_ranked_index():
    client = FakeRedis()
    store = RedisProfileStore(key_prefix="t:", client=client)

    await store.upsert_profile(PUBKEY, True, True, True, 1.0, ["wss://a"], T0)

    assert client.transactions == [True]
    (commands,) = client.executed
    names = [name for name, _, _ in commands]
    assert names == ["hset", "hsetnx", "sadd", "zadd"]
    assert commands[0][1] == (f"t:profile:{PUBKEY}",)
    assert commands[1][1] == (f"t:profile:{PUBKEY}", "created_at", T0.isoformat())
    assert commands[3][1] == ("t:profiles:ranked", {PUBKEY: 1.0})


@pytest.mark.asyncio
async def test_incomplete_profile_is_removed_from_ranked_index():
    client = FakeRedis()
    store = RedisProfileStore(key_prefix="t:", client=client)

    await store.upsert_profile(PUBKEY, True, True, False, 0.7, ["wss://a"], T0)

    (commands,) = client.executed
    assert commands[-1][0] == "zrem"
    assert commands[-1][1] == ("t:profiles:ranked", PUBKEY)


@pytest.mark.asyncio
async def test_query_skips_excluded_and_stale_entries():
    keep, excluded, stale = "01" * 32, "02" * 32, "03" * 32
    complete = profile_to_hash(True, True, True, 1.0, ["wss://a"], T0)
    client = FakeRedis(
        ranked=[excluded, stale, keep],
        hashes={
            f"t:profile:{keep}": complete,
            f"t:profile:{stale}": profile_to_hash(True, False, True, 0.7, ["wss://a"], T0),
        },
    )
    store = RedisProfileStore(key_prefix="t:", client=client)

    profiles = await store.query_top_profiles(limit=2, exclude={excluded})

    assert [p.pubkey for p in profiles] == [keep]


@pytest.mark.asyncio
async def test_query_skips_corrupt_hash():
    good, corrupt = "01" * 32, "04" * 32
    broken = profile_to_hash(True, True, True, 1.0, ["wss://a"], T0)
    broken["last_seen"] = "yesterday"
    client = FakeRedis(
        ranked=[good, corrupt],
        hashes={
            f"t:profile:{good}": profile_to_hash(True, True, True, 1.0, ["wss://a"], T0),
            f"t:profile:{corrupt}": broken,
        },
    )
    store = RedisProfileStore(key_prefix="t:", client=client)

    profiles = await store.query_top_profiles(limit=5)

    assert [p.pubkey for p in profiles] == [good]


@pytest.mark.asyncio
async def test_redis_errors_surface_as_store_unavailable():
    store = RedisProfileStore(client=DownRedis())
    with pytest.raises(StoreUnavailable):
        await store.query_top_profiles(limit=5)
