from fastapi import APIRouter, Request
from loguru import logger

from profile_curator.core.errors import StoreUnavailable

router = APIRouter(tags=["stats"])


@router.get("/stats")
async def get_stats(request: Request) -> dict:
    """Return store reachability, profile counts and indexer counters."""
    state = request.app.state
    try:
        store_status = "ok" if await state.store.ping() else "unavailable"
    except StoreUnavailable:
        store_status = "unavailable"
    try:
        profiles = await state.store.count_profiles()
    except StoreUnavailable as exc:
        logger.warning(f"Failed to count profiles: {exc}")
        profiles = "unavailable"

    indexer = getattr(state, "indexer", None)
    return {
        "store": {"backend": state.store.name, "status": store_status},
        "profiles": profiles,
        "indexer": indexer.stats.as_dict() if indexer else None,
        "sessions": len(state.sessions),
        "rate_limited_clients": len(state.rate_limiter),
    }
