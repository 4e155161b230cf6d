import json
from collections.abc import Mapping
from typing import Any

from profile_curator.core.constants import BIO_FIELDS, PICTURE_FIELDS, USERNAME_FIELDS
from profile_curator.core.errors import MalformedPayload
from profile_curator.models.profile import ProfileScore


def parse_metadata(content: str) -> dict[str, Any]:
    """
    Decode a kind-0 event's content into a metadata mapping.

    Raises:
        MalformedPayload: content is not JSON, or is JSON but not an object.
    """
    try:
        metadata = json.loads(content)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"content is not valid JSON: {e}") from e
    if not isinstance(metadata, dict):
        raise MalformedPayload(f"content is a JSON {type(metadata).__name__}, expected an object")
    return metadata


def _has_any(metadata: Mapping, fields: tuple[str, ...]) -> bool:
    return any(metadata.get(field) for field in fields)


def score_metadata(metadata: Any) -> ProfileScore:
    """
    Score a profile's completeness from its raw metadata.

    Total over any input: a non-mapping counts as empty, and a field counts as
    present when it holds any non-empty value. Never raises.
    """
    if not isinstance(metadata, Mapping):
        return ProfileScore()

    return ProfileScore(
        has_picture=_has_any(metadata, PICTURE_FIELDS),
        has_username=_has_any(metadata, USERNAME_FIELDS),
        has_bio=_has_any(metadata, BIO_FIELDS),
    )
