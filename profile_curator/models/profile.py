from datetime import datetime, timezone

from pydantic import BaseModel, Field, computed_field

from profile_curator.core.constants import WEIGHT_BIO, WEIGHT_PICTURE, WEIGHT_USERNAME


def completeness_score(has_picture: bool, has_username: bool, has_bio: bool) -> float:
    """Weighted sum of the three feature flags, rounded to kill float noise (0.4 + 0.3 != 0.7)."""
    score = WEIGHT_PICTURE * has_picture + WEIGHT_USERNAME * has_username + WEIGHT_BIO * has_bio
    return round(score, 2)


class ProfileScore(BaseModel):
    """Feature flags extracted from profile metadata and the score they imply."""

    has_picture: bool = False
    has_username: bool = False
    has_bio: bool = False

    @computed_field
    @property
    def score(self) -> float:
        return completeness_score(self.has_picture, self.has_username, self.has_bio)

    @property
    def qualifies(self) -> bool:
        """Only complete profiles are served in curated batches."""
        return self.has_picture and self.has_username and self.has_bio


class Profile(ProfileScore):
    """One stored record per publisher pubkey."""

    pubkey: str
    relay_list: list[str] = Field(default_factory=list)
    last_seen: datetime
    created_at: datetime

    @property
    def last_updated(self) -> str:
        last_seen = self.last_seen
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        return last_seen.astimezone(timezone.utc).isoformat()


class BatchProfile(BaseModel):
    """Public shape of a profile inside a curated batch."""

    pubkey: str
    relays: list[str]
    score: float
    last_updated: str

    @classmethod
    def from_profile(cls, profile: Profile) -> "BatchProfile":
        return cls(
            pubkey=profile.pubkey,
            relays=list(profile.relay_list),
            score=profile.score,
            last_updated=profile.last_updated,
        )


class ProfileBatch(BaseModel):
    profiles: list[BatchProfile] = Field(default_factory=list)
    next_cursor: str | None = None
