import asyncio

from loguru import logger

from profile_curator.services.rate_limiter import RateLimiter
from profile_curator.services.session_tracker import SessionTracker


class Janitor:
    """Periodically evicts stale rate-limit windows and idle sessions to bound memory."""

    def __init__(self, rate_limiter: RateLimiter, sessions: SessionTracker, interval: float = 60.0):
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.interval = interval
        self._task: asyncio.Task | None = None

    def sweep(self) -> dict[str, int]:
        windows = self.rate_limiter.sweep()
        sessions = self.sessions.sweep()
        if windows or sessions:
            logger.debug(f"Janitor evicted {windows} rate-limit windows and {sessions} sessions")
        return {"windows": windows, "sessions": sessions}

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep()
            except Exception as e:
                logger.exception(f"Janitor sweep failed: {e}")

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="janitor")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
