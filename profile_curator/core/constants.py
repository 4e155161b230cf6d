"""
Core constants used across the application. Keep these simple and documented.
"""

# Nostr event kind for profile metadata (NIP-01)
PROFILE_METADATA_KIND: int = 0

# Completeness weights; picture counts most
WEIGHT_PICTURE: float = 0.4
WEIGHT_USERNAME: float = 0.3
WEIGHT_BIO: float = 0.3

# Equivalent field names accepted for each feature
PICTURE_FIELDS: tuple[str, ...] = ("picture", "image")
USERNAME_FIELDS: tuple[str, ...] = ("name", "username", "display_name", "displayName")
BIO_FIELDS: tuple[str, ...] = ("about", "bio")

# Redis key templates (prefixed with settings.REDIS_KEY_PREFIX)
PROFILE_KEY: str = "profile:{pubkey}"
RANKED_PROFILES_KEY: str = "profiles:ranked"
ALL_PROFILES_KEY: str = "profiles:all"
