import math

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from profile_curator.core.config import settings
from profile_curator.core.errors import CuratorError, RateLimited


def error_response(exc: CuratorError, status_code: int) -> JSONResponse:
    """Structured rejection body shared by middleware and exception handlers."""
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return JSONResponse(status_code=status_code, content={"error": exc.reason, "detail": exc.message}, headers=headers)


def client_id_for(request: Request) -> str:
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Gate every request except the liveness probe through the app's RateLimiter."""

    def __init__(self, app, exempt_paths: set[str] | None = None):
        super().__init__(app)
        self.exempt_paths = exempt_paths or set()

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)
        rate_limiter = request.app.state.rate_limiter
        try:
            await rate_limiter.check(client_id_for(request))
        except RateLimited as exc:
            return error_response(exc, 429)
        return await call_next(request)
