import asyncio
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from loguru import logger
from pydantic import BaseModel, Field

from profile_curator.core.security import short_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    session_id: str
    seen_profiles: set[str] = Field(default_factory=set)
    created_at: datetime
    last_active: datetime


class SessionTracker:
    """
    Process-scoped record of which profiles each browsing session has been served.

    A session's seen-set only grows while the session lives. Sessions idle for
    longer than ``idle_ttl_seconds`` are dropped by :meth:`sweep`, and the least
    recently active ones are dropped when more than ``max_sessions`` exist.
    """

    def __init__(
        self,
        idle_ttl_seconds: float = 3600.0,
        max_sessions: int = 10000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.idle_ttl_seconds = idle_ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        # Ordered by last activity, oldest first
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def lock(self, session_id: str) -> asyncio.Lock:
        """The lock that serializes updates to one session."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def seen(self, session_id: str) -> frozenset[str]:
        session = self._sessions.get(session_id)
        return frozenset(session.seen_profiles) if session else frozenset()

    def mark_seen(self, session_id: str, pubkeys: Iterable[str]) -> Session:
        """Add pubkeys to a session, creating it if needed. Caller must hold ``lock(session_id)``."""
        now = self._clock()
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, created_at=now, last_active=now)
            self._sessions[session_id] = session
            logger.debug(f"[{short_id(session_id)}] Session created")
            self._evict_overflow()
        session.seen_profiles.update(pubkeys)
        session.last_active = now
        self._sessions.move_to_end(session_id)
        return session

    async def record(self, session_id: str, pubkeys: Iterable[str]) -> Session:
        async with self.lock(session_id):
            return self.mark_seen(session_id, pubkeys)

    def _evict_overflow(self) -> int:
        evicted = 0
        for session_id in list(self._sessions):
            if len(self._sessions) <= self.max_sessions:
                break
            if self._locks.get(session_id) is not None and self._locks[session_id].locked():
                continue
            self._drop(session_id)
            evicted += 1
        return evicted

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def sweep(self) -> int:
        """Evict idle sessions, then trim to ``max_sessions``. Returns the number evicted."""
        now = self._clock()
        idle = []
        for session_id, session in self._sessions.items():
            if (now - session.last_active).total_seconds() < self.idle_ttl_seconds:
                # Ordered by activity: everything after this is fresher
                break
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            idle.append(session_id)
        for session_id in idle:
            self._drop(session_id)
        # Locks created for sessions that never got recorded
        for session_id in [s for s, lock in self._locks.items() if s not in self._sessions and not lock.locked()]:
            del self._locks[session_id]
        return len(idle) + self._evict_overflow()
