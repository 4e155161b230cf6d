import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from profile_curator.core.constants import PROFILE_METADATA_KIND

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class MetadataEvent(BaseModel):
    """A kind-0 Nostr event as delivered by a relay.

    Only the shape is checked here; signatures are trusted to the transport.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    pubkey: str
    created_at: int = 0
    kind: int
    tags: list[Any] = Field(default_factory=list)
    content: str
    sig: str = ""
    relay: str | None = None

    @field_validator("pubkey")
    @classmethod
    def _check_pubkey(cls, value: str) -> str:
        value = value.strip().lower()
        if not _HEX64.match(value):
            raise ValueError("pubkey must be 64 hex characters")
        return value

    @field_validator("kind")
    @classmethod
    def _check_kind(cls, value: int) -> int:
        if value != PROFILE_METADATA_KIND:
            raise ValueError(f"expected kind {PROFILE_METADATA_KIND}, got {value}")
        return value
