from collections.abc import AsyncIterable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from profile_curator.api.main import api_router
from profile_curator.api.middleware import RateLimitMiddleware, error_response
from profile_curator.core.errors import StoreUnavailable
from profile_curator.core.log import setup_logging
from profile_curator.services.curator import ProfileCurator
from profile_curator.services.indexer import Indexer
from profile_curator.services.janitor import Janitor
from profile_curator.services.rate_limiter import RateLimiter
from profile_curator.services.relay_pool import RelayPool
from profile_curator.services.session_tracker import SessionTracker
from profile_curator.services.store import ProfileStore, create_store

from .config import settings
from .version import __version__


def _relay_events() -> AsyncIterable[dict[str, Any]]:
    pool = RelayPool(
        settings.relays,
        backfill_limit=settings.RELAY_BACKFILL_LIMIT,
        reconnect_min_sec=settings.RELAY_RECONNECT_MIN_SECONDS,
        reconnect_max_sec=settings.RELAY_RECONNECT_MAX_SECONDS,
        dedup_cache_size=settings.RELAY_DEDUP_CACHE_SIZE,
        dedup_ttl_sec=settings.RELAY_DEDUP_TTL_SECONDS,
    )
    return pool.events()


def create_app(
    store: ProfileStore | None = None,
    events: AsyncIterable[dict[str, Any]] | None = None,
    rate_limiter: RateLimiter | None = None,
    sessions: SessionTracker | None = None,
) -> FastAPI:
    """
    Build the application. Components not passed in are created from settings
    when the app starts; ``events`` replaces the relay subscription.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifespan events (startup/shutdown).
        """
        setup_logging()
        state = app.state
        state.store = store if store is not None else create_store()
        state.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        state.sessions = sessions if sessions is not None else SessionTracker(
            idle_ttl_seconds=settings.SESSION_IDLE_TTL_SECONDS,
            max_sessions=settings.SESSION_MAX_COUNT,
        )
        state.curator = ProfileCurator(state.store, state.sessions, auto_exclude=settings.SESSION_AUTO_EXCLUDE)
        state.janitor = Janitor(state.rate_limiter, state.sessions, interval=settings.JANITOR_INTERVAL_SECONDS)
        state.janitor.start()

        state.indexer = None
        if events is not None or settings.INDEXER_ENABLED:
            state.indexer = Indexer(
                state.store,
                events if events is not None else _relay_events(),
                relays=settings.relays,
                heartbeat_interval=settings.INDEXER_HEARTBEAT_SECONDS,
            )
            state.indexer.start()
        else:
            logger.info("Indexer disabled; serving existing profiles only")

        logger.info(f"Profile Curator {__version__} started with {state.store.name}")
        yield

        if state.indexer is not None:
            await state.indexer.stop()
        await state.janitor.stop()
        try:
            await state.store.close()
        except Exception as exc:
            logger.warning(f"Failed to close profile store: {exc}")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Curated batches of complete Nostr profiles",
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.APP_ENV == "production" else "/docs",
        redoc_url=None if settings.APP_ENV == "production" else "/redoc",
    )

    app.add_middleware(RateLimitMiddleware, exempt_paths={f"{settings.API_PREFIX}/health"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc, 503)

    app.include_router(api_router, prefix=settings.API_PREFIX)
    return app


app = create_app()
