from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    PORT: int = 8000
    APP_ENV: Literal["development", "production", "test"] = "production"
    APP_NAME: str = "Profile Curator"
    API_PREFIX: str = ""
    LOG_LEVEL: str = "INFO"

    # Storage
    STORE_BACKEND: Literal["redis", "memory"] = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "pc:"
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Relays
    NOSTR_RELAYS: str = "wss://relay.damus.io,wss://nos.lol"
    # Bounds only the stored backlog a relay replays on subscribe; live events are uncapped
    RELAY_BACKFILL_LIMIT: int = 1000
    RELAY_RECONNECT_MIN_SECONDS: float = 1.0
    RELAY_RECONNECT_MAX_SECONDS: float = 60.0
    RELAY_DEDUP_CACHE_SIZE: int = 50000
    RELAY_DEDUP_TTL_SECONDS: int = 3600

    # Indexer
    INDEXER_ENABLED: bool = True
    INDEXER_HEARTBEAT_SECONDS: float = 60.0

    # Rate limiting
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    TRUST_FORWARDED_FOR: bool = False

    # Curation
    DEFAULT_BATCH_SIZE: int = 50
    MAX_BATCH_SIZE: int = 500
    SESSION_AUTO_EXCLUDE: bool = False
    SESSION_IDLE_TTL_SECONDS: float = 3600.0
    SESSION_MAX_COUNT: int = 10000
    JANITOR_INTERVAL_SECONDS: float = 60.0

    @field_validator("NOSTR_RELAYS")
    @classmethod
    def _require_relays(cls, value: str) -> str:
        if not [r for r in value.split(",") if r.strip()]:
            raise ValueError("NOSTR_RELAYS must name at least one relay")
        return value

    @property
    def relays(self) -> list[str]:
        """Configured relay URLs, in order, without blanks or duplicates."""
        seen: list[str] = []
        for relay in self.NOSTR_RELAYS.split(","):
            relay = relay.strip()
            if relay and relay not in seen:
                seen.append(relay)
        return seen


settings = Settings()
