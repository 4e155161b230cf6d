import asyncio
from collections.abc import AsyncIterable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import ValidationError

from profile_curator.core.errors import MalformedPayload, StoreUnavailable
from profile_curator.core.security import short_id
from profile_curator.models.event import MetadataEvent
from profile_curator.services.scoring import parse_metadata, score_metadata
from profile_curator.services.store.base import ProfileStore


class IngestOutcome(str, Enum):
    STORED = "stored"
    MALFORMED = "malformed"
    STORE_UNAVAILABLE = "store_unavailable"
    FAILED = "failed"


@dataclass
class IndexerStats:
    received: int = 0
    stored: int = 0
    malformed: int = 0
    store_unavailable: int = 0
    failed: int = 0

    def count(self, outcome: IngestOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Indexer:
    """
    Materializes scored profiles from a stream of kind-0 events.

    Every event is attempted once: validated, parsed, scored and upserted.
    Failures are classified, counted and the event dropped; nothing short of
    cancellation ends :meth:`run` before the stream does.
    """

    def __init__(
        self,
        store: ProfileStore,
        events: AsyncIterable[dict[str, Any]],
        relays: list[str],
        heartbeat_interval: float = 60.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.events = events
        self.relays = list(relays)
        self.heartbeat_interval = heartbeat_interval
        self.stats = IndexerStats()
        self._clock = clock
        self._tasks: list[asyncio.Task] = []

    async def process_event(self, raw: dict[str, Any]) -> IngestOutcome:
        """Handle one inbound event and report what happened to it."""
        self.stats.received += 1
        try:
            outcome = await self._ingest(raw)
        except MalformedPayload as e:
            logger.warning(f"Dropping malformed event from {self._source(raw)}: {e.message}")
            outcome = IngestOutcome.MALFORMED
        except StoreUnavailable as e:
            logger.error(f"[{short_id(self._pubkey(raw))}] Dropping event, store unavailable: {e.message}")
            outcome = IngestOutcome.STORE_UNAVAILABLE
        except Exception as e:
            logger.exception(f"[{short_id(self._pubkey(raw))}] Unexpected error processing profile event: {e}")
            outcome = IngestOutcome.FAILED
        self.stats.count(outcome)
        return outcome

    async def _ingest(self, raw: dict[str, Any]) -> IngestOutcome:
        try:
            event = MetadataEvent.model_validate(raw)
        except ValidationError as e:
            raise MalformedPayload(f"invalid event: {e.error_count()} validation error(s)") from e

        metadata = parse_metadata(event.content)
        scored = score_metadata(metadata)

        await self.store.upsert_profile(
            pubkey=event.pubkey,
            has_picture=scored.has_picture,
            has_username=scored.has_username,
            has_bio=scored.has_bio,
            score=scored.score,
            relay_list=self.relays,
            last_seen=self._clock(),
        )
        logger.debug(f"[{short_id(event.pubkey)}] Stored profile with score {scored.score}")
        return IngestOutcome.STORED

    @staticmethod
    def _pubkey(raw: Any) -> str | None:
        if isinstance(raw, dict) and isinstance(raw.get("pubkey"), str):
            return raw["pubkey"]
        return None

    @staticmethod
    def _source(raw: Any) -> str:
        if isinstance(raw, dict) and raw.get("relay"):
            return str(raw["relay"])
        return "unknown relay"

    async def run(self) -> None:
        """Consume the event stream until it ends or the task is cancelled."""
        logger.info(f"Starting profile indexer on {len(self.relays)} relays")
        async for raw in self.events:
            await self.process_event(raw)
        logger.warning("Profile event stream ended")

    async def heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            logger.info(f"Indexer heartbeat: {self.stats.as_dict()}")

    def start(self) -> None:
        """Run the consumer and heartbeat as background tasks."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._supervise(self.run(), "indexer"), name="indexer"),
            asyncio.create_task(self._supervise(self.heartbeat(), "heartbeat"), name="indexer-heartbeat"),
        ]

    async def _supervise(self, coro, name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Indexer {name} task failed: {e}")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        close = getattr(self.events, "aclose", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.warning(f"Failed to close event stream: {e}")
        logger.info("Profile indexer stopped")
