from profile_curator.core.config import settings

from .base import ProfileStore
from .memory_store import InMemoryProfileStore
from .redis_store import RedisProfileStore


def create_store(backend: str | None = None) -> ProfileStore:
    """Build the profile store named by ``backend`` (defaults to settings.STORE_BACKEND)."""
    backend = backend or settings.STORE_BACKEND
    if backend == "memory":
        return InMemoryProfileStore(timeout=settings.STORE_TIMEOUT_SECONDS)
    if backend == "redis":
        return RedisProfileStore()
    raise ValueError(f"Unknown store backend: {backend}")


__all__ = ["ProfileStore", "InMemoryProfileStore", "RedisProfileStore", "create_store"]
