from collections.abc import Iterable

from loguru import logger

from profile_curator.core.security import short_id
from profile_curator.models.profile import BatchProfile, Profile, ProfileBatch
from profile_curator.services.session_tracker import SessionTracker
from profile_curator.services.store.base import ProfileStore


class ProfileCurator:
    """
    Serves batches of the best-scored complete profiles.

    The caller's ``exclude_ids`` always apply. With ``auto_exclude`` on, profiles
    already served to the session are excluded too, and the query plus the
    seen-set update run under the session's lock so that two concurrent requests
    for one session never get the same profile.
    """

    def __init__(self, store: ProfileStore, sessions: SessionTracker, auto_exclude: bool = False):
        self.store = store
        self.sessions = sessions
        self.auto_exclude = auto_exclude

    async def get_curated_batch(
        self,
        count: int = 50,
        exclude_ids: Iterable[str] = (),
        session_id: str | None = None,
    ) -> ProfileBatch:
        exclude = {pubkey for pubkey in exclude_ids if pubkey}

        if not session_id:
            profiles = await self.store.query_top_profiles(count, exclude)
        elif self.auto_exclude:
            async with self.sessions.lock(session_id):
                exclude |= self.sessions.seen(session_id)
                profiles = await self.store.query_top_profiles(count, exclude)
                self.sessions.mark_seen(session_id, (p.pubkey for p in profiles))
        else:
            profiles = await self.store.query_top_profiles(count, exclude)
            await self.sessions.record(session_id, (p.pubkey for p in profiles))

        if session_id:
            logger.debug(f"[{short_id(session_id)}] Served {len(profiles)} profiles (excluded {len(exclude)})")
        return self._shape(profiles)

    @staticmethod
    def _shape(profiles: list[Profile]) -> ProfileBatch:
        return ProfileBatch(profiles=[BatchProfile.from_profile(p) for p in profiles])
