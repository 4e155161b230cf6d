import json
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from loguru import logger

from profile_curator.core.config import settings
from profile_curator.core.constants import ALL_PROFILES_KEY, PROFILE_KEY, RANKED_PROFILES_KEY
from profile_curator.core.security import short_id
from profile_curator.models.profile import Profile
from profile_curator.services.store.base import ProfileStore


def profile_to_hash(
    has_picture: bool,
    has_username: bool,
    has_bio: bool,
    score: float,
    relay_list: list[str],
    last_seen: datetime,
) -> dict[str, str]:
    """Flatten the replaceable profile fields into a Redis hash mapping (created_at excluded)."""
    return {
        "has_picture": "1" if has_picture else "0",
        "has_username": "1" if has_username else "0",
        "has_bio": "1" if has_bio else "0",
        "score": repr(float(score)),
        "relay_list": json.dumps(list(relay_list)),
        "last_seen": _isoformat(last_seen),
    }


def profile_from_hash(pubkey: str, data: dict[str, Any]) -> Profile | None:
    """Rebuild a Profile from a hash; None for a missing, half-written or corrupt record."""
    if not data or "last_seen" not in data:
        return None
    try:
        relay_list = json.loads(data.get("relay_list") or "[]")
    except json.JSONDecodeError:
        relay_list = []
    try:
        last_seen = datetime.fromisoformat(data["last_seen"])
        created_at = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else last_seen
    except ValueError:
        logger.warning(f"[{short_id(pubkey)}] Skipping profile with corrupt timestamps")
        return None
    return Profile(
        pubkey=pubkey,
        has_picture=data.get("has_picture") == "1",
        has_username=data.get("has_username") == "1",
        has_bio=data.get("has_bio") == "1",
        relay_list=relay_list if isinstance(relay_list, list) else [],
        last_seen=last_seen,
        created_at=created_at,
    )


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class RedisProfileStore(ProfileStore):
    """
    Redis-backed profile store.

    Layout (all keys carry ``key_prefix``):
      - ``profile:{pubkey}``  hash with the flags, score, relay list and timestamps
      - ``profiles:ranked``   sorted set of qualifying pubkeys scored by completeness
      - ``profiles:all``      set of every pubkey ever stored

    Each upsert is a single MULTI/EXEC, so concurrent writes for one pubkey are
    last-write-wins and the ranked index never disagrees with the hash.
    """

    name = "redis store"
    backend_errors = (redis.RedisError, OSError)

    def __init__(
        self,
        url: str | None = None,
        key_prefix: str | None = None,
        timeout: float | None = None,
        client: redis.Redis | None = None,
    ):
        super().__init__(timeout=settings.STORE_TIMEOUT_SECONDS if timeout is None else timeout)
        self.url = url or settings.REDIS_URL
        self.key_prefix = settings.REDIS_KEY_PREFIX if key_prefix is None else key_prefix
        self._client: redis.Redis | None = client
        if not self.url:
            logger.warning("REDIS_URL is not set. Profile storage will fail until configured.")

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            logger.info("Creating Redis client for profile store")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                health_check_interval=30,
                socket_keepalive=True,
            )
        return self._client

    async def close(self) -> None:
        """Close and disconnect the Redis client"""
        if self._client is not None:
            try:
                await self._client.aclose()
                logger.info("Profile store Redis client closed")
            except Exception as exc:
                logger.warning(f"Failed to close profile store Redis client: {exc}")
            finally:
                self._client = None

    def _profile_key(self, pubkey: str) -> str:
        return self.key_prefix + PROFILE_KEY.format(pubkey=pubkey)

    @property
    def _ranked_key(self) -> str:
        return self.key_prefix + RANKED_PROFILES_KEY

    @property
    def _all_key(self) -> str:
        return self.key_prefix + ALL_PROFILES_KEY

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
        client = await self.get_client()
        key = self._profile_key(pubkey)
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=profile_to_hash(has_picture, has_username, has_bio, score, relay_list, last_seen))
            pipe.hsetnx(key, "created_at", _isoformat(last_seen))
            pipe.sadd(self._all_key, pubkey)
            if has_picture and has_username and has_bio:
                pipe.zadd(self._ranked_key, {pubkey: score})
            else:
                pipe.zrem(self._ranked_key, pubkey)
            await pipe.execute()

    async def _query_top_profiles(self, limit: int, exclude: frozenset[str]) -> list[Profile]:
        client = await self.get_client()
        # At most len(exclude) of the top entries can be skipped
        ranked = await client.zrevrange(self._ranked_key, 0, limit + len(exclude) - 1)
        pubkeys = [p for p in ranked if p not in exclude][:limit]
        if not pubkeys:
            return []

        async with client.pipeline(transaction=False) as pipe:
            for pubkey in pubkeys:
                pipe.hgetall(self._profile_key(pubkey))
            records = await pipe.execute()

        profiles = []
        for pubkey, data in zip(pubkeys, records):
            profile = profile_from_hash(pubkey, data)
            # Index and hash can briefly disagree if a write lands between the two reads
            if profile is None or not profile.qualifies:
                continue
            profiles.append(profile)
        return profiles

    async def _get_profile(self, pubkey: str) -> Profile | None:
        client = await self.get_client()
        return profile_from_hash(pubkey, await client.hgetall(self._profile_key(pubkey)))

    async def _count_profiles(self) -> dict[str, int]:
        client = await self.get_client()
        total = await client.scard(self._all_key)
        qualified = await client.zcard(self._ranked_key)
        return {"total": int(total), "qualified": int(qualified)}

    async def _ping(self) -> bool:
        client = await self.get_client()
        return bool(await client.ping())
