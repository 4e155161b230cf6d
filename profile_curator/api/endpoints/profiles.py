from typing import Any

from fastapi import APIRouter, Body, Query, Request
from loguru import logger

from profile_curator.core.config import settings
from profile_curator.models.profile import ProfileBatch

router = APIRouter(prefix="/profiles", tags=["profiles"])


def _split_ids(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@router.get("/batch", response_model=ProfileBatch, response_model_exclude_none=True)
async def get_profile_batch(
    request: Request,
    count: int = Query(default=settings.DEFAULT_BATCH_SIZE, ge=1, le=settings.MAX_BATCH_SIZE),
    exclude: str | None = Query(default=None, description="Comma-separated pubkeys to leave out"),
    session_id: str | None = Query(default=None, description="Opaque browsing-session token"),
) -> ProfileBatch:
    """
    Return the best-scored complete profiles.

    Store failures surface as 503 via the StoreUnavailable handler; no partial batch is returned.
    """
    curator = request.app.state.curator
    return await curator.get_curated_batch(count=count, exclude_ids=_split_ids(exclude), session_id=session_id)


@router.post("/interaction")
async def record_interaction(payload: Any = Body(default=None)) -> dict[str, bool]:
    # Informational only for now
    logger.info(f"User interaction: {payload}")
    return {"success": True}
