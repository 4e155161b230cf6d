"""
Domain errors shared by the ingestion and serving paths.

Ingestion catches these and drops the event; the HTTP layer maps them to
structured rejections (see ``profile_curator.core.app``).
"""


class CuratorError(Exception):
    """Base class for all domain errors."""

    reason: str = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class MalformedPayload(CuratorError):
    """Event content or shape is not valid profile metadata."""

    reason = "malformed_payload"


class StoreUnavailable(CuratorError):
    """A persistence or query call failed or timed out."""

    reason = "store_unavailable"


class RateLimited(CuratorError):
    """Admission denied for a client; carries seconds until the next slot frees up."""

    reason = "rate_limited"

    def __init__(self, client_id: str, retry_after: float):
        super().__init__("Too many requests")
        self.client_id = client_id
        self.retry_after = retry_after
