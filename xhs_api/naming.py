"""File naming for downloaded media.

Base names are rendered from a user template such as
``{title}_{publishTime}_{downloadTimestamp}`` and always end with the
zero-padded 1-based index of the item inside its note, which keeps names
unique within a run even when the template renders identical text.
"""

import logging
import re
from typing import Callable, Dict, Optional

from .models import NamingPreferences, NoteMetadata

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 120
FALLBACK_NAME = "xhs"

_placeholder_regex = re.compile(r"\{([^}]+)\}")
_control_regex = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_whitespace_regex = re.compile(r"\s+")
_underscore_regex = re.compile(r"_+")

INVALID_CHARACTERS = '\\/:*?"<>|'


def sanitize(value: Optional[str], allow_hyphen: bool = False) -> Optional[str]:
    """Make a string safe to use as a file name fragment.

    Returns:
        The sanitized text, or None when nothing usable remains.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    invalid = INVALID_CHARACTERS if allow_hyphen else INVALID_CHARACTERS + "-"
    value = "".join("_" if char in invalid else char for char in value)
    value = _control_regex.sub("", value)
    value = _whitespace_regex.sub("_", value)
    value = _underscore_regex.sub("_", value)
    value = value.strip("_")
    value = value[:MAX_NAME_LENGTH]
    return value or None


def _token_resolvers(
    metadata: NoteMetadata,
    fallback_post_id: Optional[str],
    index: int,
    index_part: str,
    download_epoch_seconds: float,
) -> Dict[str, Callable[[], str]]:
    return {
        "username": lambda: sanitize(metadata.user_name) or "",
        "userId": lambda: sanitize(metadata.user_id) or "",
        "title": lambda: sanitize(metadata.title) or "",
        "postId": lambda: sanitize(fallback_post_id) or "",
        "publishTime": lambda: sanitize(metadata.publish_time, allow_hyphen=True) or "",
        "index": lambda: str(max(index, 1)),
        "index_padded": lambda: index_part,
        "downloadTimestamp": lambda: str(int(download_epoch_seconds)),
    }


def render_template(
    template: str,
    metadata: NoteMetadata,
    fallback_post_id: Optional[str],
    index: int,
    download_epoch_seconds: float,
) -> str:
    """Replace every ``{token}`` placeholder; unknown tokens become empty."""
    index_part = f"{max(index, 1):02d}"
    resolvers = _token_resolvers(metadata, fallback_post_id, index, index_part, download_epoch_seconds)

    result = template
    # Back to front so pending match offsets stay valid
    for match in reversed(list(_placeholder_regex.finditer(template))):
        resolver = resolvers.get(match.group(1))
        replacement = resolver() if resolver else ""
        result = result[:match.start()] + replacement + result[match.end():]
    return result


def make_base_name(
    metadata: NoteMetadata,
    fallback_post_id: Optional[str],
    index: int,
    download_epoch_seconds: float,
    preferences: NamingPreferences,
) -> str:
    """Build the file name stem for the index-th media item of a note."""
    index_part = f"{max(index, 1):02d}"

    if preferences.enabled:
        rendered = render_template(
            preferences.template, metadata, fallback_post_id, index, download_epoch_seconds
        )
        sanitized = sanitize(rendered, allow_hyphen=True)
        if sanitized:
            return f"{sanitized}_{index_part}"
        logger.debug(f"Template {preferences.template!r} rendered empty, using fallback name")

    fallback = fallback_post_id or metadata.title or metadata.user_name or FALLBACK_NAME
    return f"{sanitize(fallback, allow_hyphen=True) or FALLBACK_NAME}_{index_part}"
