import asyncio

import pytest

from profile_curator.services.indexer import Indexer, IngestOutcome
from profile_curator.services.store import InMemoryProfileStore

RELAYS = ["wss://relay.one", "wss://relay.two"]


def pk(n: int) -> str:
    return f"{n:064x}"


async def _stream(events):
    for event in events:
        yield event


class FlakyStore(InMemoryProfileStore):
    """Fails the first ``failures`` upserts with a backend error."""

    backend_errors = (ConnectionError,)

    def __init__(self, failures: int = 1):
        super().__init__(timeout=1.0)
        self.failures = failures

    async def _upsert_profile(self, *args, **kwargs):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("redis down")
        await super()._upsert_profile(*args, **kwargs)


class ExplodingStore(InMemoryProfileStore):
    async def _upsert_profile(self, *args, **kwargs):
        raise RuntimeError("bug")


class TestProcessEvent:
    @pytest.mark.asyncio
    async def test_scores_and_stores_profile(self, store, make_event, utc_clock):
        indexer = Indexer(store, _stream([]), RELAYS, clock=utc_clock)

        outcome = await indexer.process_event(make_event(7, {"picture": "u", "name": "n"}))

        assert outcome is IngestOutcome.STORED
        profile = await store.get_profile(pk(7))
        assert (profile.has_picture, profile.has_username, profile.has_bio) == (True, True, False)
        assert profile.score == 0.7
        assert profile.last_seen == utc_clock.now
        assert indexer.stats.stored == 1

    @pytest.mark.asyncio
    async def test_relay_list_is_the_configured_set(self, store, make_event):
        indexer = Indexer(store, _stream([]), RELAYS)

        await indexer.process_event(make_event(1, {"name": "n"}, relay="wss://relay.two"))

        assert (await store.get_profile(pk(1))).relay_list == RELAYS

    @pytest.mark.asyncio
    async def test_later_event_overwrites_flags(self, store, make_event, utc_clock):
        indexer = Indexer(store, _stream([]), RELAYS, clock=utc_clock)
        await indexer.process_event(make_event(1, {"picture": "u", "name": "n", "about": "a"}))
        created = utc_clock.now
        utc_clock.advance(60)

        await indexer.process_event(make_event(1, {"about": "a"}))

        profile = await store.get_profile(pk(1))
        assert (profile.has_picture, profile.has_username, profile.has_bio) == (False, False, True)
        assert profile.score == 0.3
        assert profile.created_at == created
        assert profile.last_seen == utc_clock.now

    @pytest.mark.asyncio
    async def test_same_event_twice_is_idempotent(self, store, make_event):
        indexer = Indexer(store, _stream([]), RELAYS)
        event = make_event(1, {"picture": "u", "name": "n", "about": "a"})

        await indexer.process_event(event)
        await indexer.process_event(event)

        assert await store.count_profiles() == {"total": 1, "qualified": 1}
        assert (await store.get_profile(pk(1))).score == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"content": "{not json"},
            {"content": '["picture", "name"]'},
            {"content": 123},
            {"kind": 1},
            {"pubkey": "npub1notahexkey"},
            {"pubkey": "abc"},
        ],
    )
    async def test_malformed_events_are_dropped(self, store, make_event, overrides):
        indexer = Indexer(store, _stream([]), RELAYS)

        outcome = await indexer.process_event(make_event(1, {"name": "n"}, **overrides))

        assert outcome is IngestOutcome.MALFORMED
        assert indexer.stats.malformed == 1
        assert await store.count_profiles() == {"total": 0, "qualified": 0}

    @pytest.mark.asyncio
    async def test_non_dict_event_is_malformed(self, store):
        indexer = Indexer(store, _stream([]), RELAYS)
        assert await indexer.process_event(["EVENT", "sub", {}]) is IngestOutcome.MALFORMED

    @pytest.mark.asyncio
    async def test_uppercase_pubkey_is_normalized(self, store, make_event):
        indexer = Indexer(store, _stream([]), RELAYS)
        await indexer.process_event(make_event(10, {"name": "n"}, pubkey=pk(10).upper()))
        assert await store.get_profile(pk(10)) is not None

    @pytest.mark.asyncio
    async def test_store_failure_drops_event(self, make_event):
        store = FlakyStore(failures=1)
        indexer = Indexer(store, _stream([]), RELAYS)

        assert await indexer.process_event(make_event(1, {"name": "n"})) is IngestOutcome.STORE_UNAVAILABLE
        assert await indexer.process_event(make_event(2, {"name": "n"})) is IngestOutcome.STORED
        assert await store.get_profile(pk(1)) is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, make_event):
        indexer = Indexer(ExplodingStore(), _stream([]), RELAYS)
        assert await indexer.process_event(make_event(1, {"name": "n"})) is IngestOutcome.FAILED
        assert indexer.stats.failed == 1


class TestRun:
    @pytest.mark.asyncio
    async def test_failures_never_stop_the_stream(self, make_event):
        store = FlakyStore(failures=1)
        events = [
            make_event(1, {"name": "n"}),
            make_event(2, "garbage"),
            make_event(3, {"picture": "u", "name": "n", "about": "a"}),
            make_event(4, {"name": "n"}, kind=3),
            make_event(5, {"picture": "u"}),
        ]
        indexer = Indexer(store, _stream(events), RELAYS)

        await indexer.run()

        assert indexer.stats.as_dict() == {
            "received": 5,
            "stored": 2,
            "malformed": 2,
            "store_unavailable": 1,
            "failed": 0,
        }
        assert [p.pubkey for p in await store.query_top_profiles(10)] == [pk(3)]

    @pytest.mark.asyncio
    async def test_start_and_stop_background_tasks(self, store, make_event):
        queue: asyncio.Queue = asyncio.Queue()

        async def live_stream():
            while True:
                yield await queue.get()

        stream = live_stream()
        indexer = Indexer(store, stream, RELAYS, heartbeat_interval=0.01)
        indexer.start()
        await queue.put(make_event(1, {"picture": "u", "name": "n", "about": "a"}))

        for _ in range(100):
            if indexer.stats.stored:
                break
            await asyncio.sleep(0.01)
        await indexer.stop()

        assert indexer.stats.stored == 1
        assert indexer._tasks == []
