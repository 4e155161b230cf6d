import asyncio
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from profile_curator.core.errors import RateLimited
from profile_curator.core.security import short_id


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: float = 0.0


class _Window:
    __slots__ = ("timestamps", "lock")

    def __init__(self) -> None:
        self.timestamps: deque[float] = deque()
        self.lock = asyncio.Lock()


class RateLimiter:
    """
    Per-client sliding-window admission control.

    Each client keeps the monotonic timestamps of its admitted requests. A request
    is admitted while fewer than ``max_requests`` of them fall inside the last
    ``window_seconds``; rejected requests are not recorded. The prune/count/append
    sequence for one client runs under that client's lock.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, timestamps: deque[float], now: float) -> None:
        while timestamps and now - timestamps[0] >= self.window_seconds:
            timestamps.popleft()

    async def hit(self, client_id: str) -> RateLimitDecision:
        """Evaluate one request for ``client_id`` and record it if admitted."""
        window = self._windows.get(client_id)
        if window is None:
            window = self._windows[client_id] = _Window()

        async with window.lock:
            now = self._clock()
            timestamps = window.timestamps
            self._prune(timestamps, now)
            if len(timestamps) >= self.max_requests:
                retry_after = max(self.window_seconds - (now - timestamps[0]), 0.0)
                return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
            timestamps.append(now)
            return RateLimitDecision(allowed=True, remaining=self.max_requests - len(timestamps))

    async def check(self, client_id: str) -> RateLimitDecision:
        """Like :meth:`hit`, but raise :class:`RateLimited` on rejection."""
        decision = await self.hit(client_id)
        if not decision.allowed:
            logger.info(f"[{short_id(client_id)}] Rate limited, retry in {decision.retry_after:.1f}s")
            raise RateLimited(client_id, decision.retry_after)
        return decision

    def sweep(self) -> int:
        """Drop windows with no live timestamps. Returns the number evicted."""
        now = self._clock()
        stale = []
        for client_id, window in self._windows.items():
            if window.lock.locked():
                continue
            self._prune(window.timestamps, now)
            if not window.timestamps:
                stale.append(client_id)
        for client_id in stale:
            del self._windows[client_id]
        return len(stale)
