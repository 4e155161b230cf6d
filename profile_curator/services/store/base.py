import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Collection
from datetime import datetime
from typing import TypeVar

from loguru import logger

from profile_curator.core.errors import StoreUnavailable
from profile_curator.models.profile import Profile, completeness_score

T = TypeVar("T")


class ProfileStore(ABC):
    """
    Boundary to the persistent keyed profile store.

    Public methods bound every call by ``timeout`` seconds and turn backend
    failures (anything in ``backend_errors``) and timeouts into
    :class:`StoreUnavailable`. Subclasses implement the underscored hooks.
    """

    name: str = "store"
    backend_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{self.name} {operation} timed out after {self.timeout}s")
            raise StoreUnavailable(f"{operation} timed out") from e
        except self.backend_errors as e:
            logger.warning(f"{self.name} {operation} failed: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    async def upsert_profile(
        self,
        pubkey: str,
        has_picture: bool,
        has_username: bool,
        has_bio: bool,
        score: float,
        relay_list: list[str],
        last_seen: datetime,
    ) -> None:
        """Replace the profile stored under ``pubkey``; ``created_at`` is kept from the first insert."""
        if score != completeness_score(has_picture, has_username, has_bio):
            raise ValueError(f"score {score} does not match the feature flags")
        await self._guard(
            "upsert",
            self._upsert_profile(pubkey, has_picture, has_username, has_bio, score, list(relay_list), last_seen),
        )

    async def query_top_profiles(self, limit: int, exclude: Collection[str] = ()) -> list[Profile]:
        """Profiles with all three flags set, best score first, skipping ``exclude``."""
        if limit <= 0:
            return []
        return await self._guard("query", self._query_top_profiles(limit, frozenset(exclude)))

    async def get_profile(self, pubkey: str) -> Profile | None:
        return await self._guard("get", self._get_profile(pubkey))

    async def count_profiles(self) -> dict[str, int]:
        return await self._guard("count", self._count_profiles())

    async def ping(self) -> bool:
        return await self._guard("ping", self._ping())

    async def close(self) -> None:
        """Release backend resources (call on shutdown)."""

    @abstractmethod
    async def _upsert_profile(
        self,
        pubkey: str,
        has_picture: bool,
        has_username: bool,
        has_bio: bool,
        score: float,
        relay_list: list[str],
        last_seen: datetime,
    ) -> None: ...

    @abstractmethod
    async def _query_top_profiles(self, limit: int, exclude: frozenset[str]) -> list[Profile]: ...

    @abstractmethod
    async def _get_profile(self, pubkey: str) -> Profile | None: ...

    @abstractmethod
    async def _count_profiles(self) -> dict[str, int]: ...

    async def _ping(self) -> bool:
        return True
