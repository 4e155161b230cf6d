import asyncio
from datetime import datetime

from profile_curator.models.profile import Profile
from profile_curator.services.store.base import ProfileStore


class InMemoryProfileStore(ProfileStore):
    """Process-local profile store for development and tests. Nothing survives a restart."""

    name = "memory store"

    def __init__(self, timeout: float = 5.0):
        super().__init__(timeout=timeout)
        self._profiles: dict[str, Profile] = {}
        self._lock = asyncio.Lock()

    async def _upsert_profile(
        self,
        pubkey: str,
        has_picture: bool,
        has_username: bool,
        has_bio: bool,
        score: float,
        relay_list: list[str],
        last_seen: datetime,
    ) -> None:
        async with self._lock:
            existing = self._profiles.get(pubkey)
            self._profiles[pubkey] = Profile(
                pubkey=pubkey,
                has_picture=has_picture,
                has_username=has_username,
                has_bio=has_bio,
                relay_list=relay_list,
                last_seen=last_seen,
                created_at=existing.created_at if existing else last_seen,
            )

    async def _query_top_profiles(self, limit: int, exclude: frozenset[str]) -> list[Profile]:
        async with self._lock:
            candidates = [p for p in self._profiles.values() if p.qualifies and p.pubkey not in exclude]
        # Same tie order as a Redis ZREVRANGE: score desc, then pubkey desc
        candidates.sort(key=lambda p: (p.score, p.pubkey), reverse=True)
        return [p.model_copy(deep=True) for p in candidates[:limit]]

    async def _get_profile(self, pubkey: str) -> Profile | None:
        profile = self._profiles.get(pubkey)
        return profile.model_copy(deep=True) if profile else None

    async def _count_profiles(self) -> dict[str, int]:
        profiles = list(self._profiles.values())
        return {"total": len(profiles), "qualified": sum(1 for p in profiles if p.qualifies)}
