"""
Multi-relay Nostr subscription: websocket per relay → REQ kind 0 → fan-in queue.

Each relay gets its own connection task that reconnects with exponential
backoff. Events from every relay land in one bounded queue (a full queue
backpressures the relay readers) and are exposed as a single async iterator.
An event already delivered by another relay is skipped, using a TTL cache of
event ids.
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import websockets
from cachetools import TTLCache
from loguru import logger
from websockets.exceptions import ConnectionClosed

from profile_curator.core.constants import PROFILE_METADATA_KIND

DEFAULT_QUEUE_MAXSIZE = 10000
_WS_PING_INTERVAL = 30.0
_WS_PING_TIMEOUT = 20.0
_WS_CLOSE_TIMEOUT = 5.0
_WS_MAX_MESSAGE_BYTES = 2**20


class RelayPool:
    """
    Unbounded subscription to profile-metadata events across several relays.

    ``events()`` may be iterated only once; the pool runs until the iterator
    is closed or :meth:`stop` is called.
    """

    def __init__(
        self,
        relays: list[str],
        *,
        backfill_limit: int | None = 1000,
        reconnect_min_sec: float = 1.0,
        reconnect_max_sec: float = 60.0,
        dedup_cache_size: int = 50000,
        dedup_ttl_sec: float = 3600.0,
        queue_maxsize: int = DEFAULT_QUEUE_MAXSIZE,
        connect: Callable[..., Any] = websockets.connect,
    ):
        if not relays:
            raise ValueError("RelayPool needs at least one relay")
        self.relays = list(relays)
        self.subscription_id = f"profiles-{uuid.uuid4().hex[:12]}"
        self.filter: dict[str, Any] = {"kinds": [PROFILE_METADATA_KIND]}
        if backfill_limit:
            self.filter["limit"] = backfill_limit
        self._reconnect_min = reconnect_min_sec
        self._reconnect_max = reconnect_max_sec
        self._seen_ids: TTLCache = TTLCache(maxsize=dedup_cache_size, ttl=dedup_ttl_sec)
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_maxsize)
        self._connect = connect
        self._stop = asyncio.Event()
        self._started = False
        self.synced: set[str] = set()

    def stop(self) -> None:
        """Signal every relay task to stop after its current message."""
        self._stop.set()

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Yield raw event dicts (annotated with ``relay``) from all relays."""
        if self._started:
            raise RuntimeError("RelayPool.events() can only be iterated once")
        self._started = True
        tasks = [asyncio.create_task(self._run_relay(url), name=f"relay:{url}") for url in self.relays]
        logger.info(f"Subscribing to {len(self.relays)} relays for kind {PROFILE_METADATA_KIND} events")
        try:
            while True:
                yield await self._queue.get()
        finally:
            self.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Relay pool stopped")

    async def _run_relay(self, url: str) -> None:
        backoff = self._reconnect_min
        attempt = 0
        while not self._stop.is_set():
            attempt += 1
            try:
                logger.info(f"Connecting to relay {url} (attempt {attempt})")
                async with self._connect(
                    url,
                    ping_interval=_WS_PING_INTERVAL,
                    ping_timeout=_WS_PING_TIMEOUT,
                    close_timeout=_WS_CLOSE_TIMEOUT,
                    max_size=_WS_MAX_MESSAGE_BYTES,
                ) as ws:
                    backoff = self._reconnect_min
                    await ws.send(json.dumps(["REQ", self.subscription_id, self.filter]))
                    logger.info(f"Subscribed to {url} as {self.subscription_id}")
                    async for raw in ws:
                        if self._stop.is_set():
                            return
                        event = self.handle_message(url, raw)
                        if event is not None:
                            await self._queue.put(event)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                logger.warning(f"Relay {url} disconnected: {e}")
            except Exception as e:
                logger.warning(f"Relay {url} connection error: {e!r}")

            if self._stop.is_set():
                break
            logger.info(f"Reconnecting to {url} in {backoff:.1f}s")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=backoff)
            except asyncio.TimeoutError:
                pass
            backoff = min(backoff * 2, self._reconnect_max)

    def handle_message(self, relay: str, raw: str | bytes) -> dict[str, Any] | None:
        """
        Interpret one relay message. Returns a new event to forward, or None.

        Handles EVENT, EOSE, NOTICE and CLOSED; anything else is ignored.
        """
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-JSON message from {relay}")
            return None
        if not isinstance(message, list) or not message:
            return None

        kind = message[0]
        if kind == "EVENT":
            if len(message) < 3 or message[1] != self.subscription_id or not isinstance(message[2], dict):
                return None
            event = dict(message[2])
            event_id = event.get("id")
            if isinstance(event_id, str) and event_id:
                if event_id in self._seen_ids:
                    return None
                self._seen_ids[event_id] = True
            event["relay"] = relay
            return event
        if kind == "EOSE":
            if relay not in self.synced:
                self.synced.add(relay)
                logger.info(f"Initial sync complete for {relay}")
        elif kind == "NOTICE":
            logger.info(f"Notice from {relay}: {message[1] if len(message) > 1 else ''}")
        elif kind == "CLOSED":
            logger.warning(f"Relay {relay} closed subscription: {message[2] if len(message) > 2 else ''}")
        return None
