"""Media and metadata extraction from XHS note data.

The embedded page state comes in several incompatible shapes depending on
the page type and client that rendered it. Extraction never assumes a
schema: every key is probed, and when nothing is recognized the raw
markup is scanned for media URLs instead.
"""

import logging
import re
from datetime import datetime
from typing import Any, Iterable, List, Optional

from yt_dlp.utils import traverse_obj

from .models import MediaDescriptor, NoteMetadata
from .state_parser import parse_initial_state
from .urls import TRACE_ENDPOINT, VIDEO_ENDPOINT, is_valid_media_url

logger = logging.getLogger(__name__)

_html_img_regex = re.compile(r"<img[^>]+src\s*=\s*['\"]([^'\"]+)['\"][^>]*>", re.IGNORECASE)
_html_url_regex = re.compile(
    r"https?://[\w\-._~:/?#\[\]@!$&'()*+,;=%]+\."
    r"(?:jpg|jpeg|png|gif|mp4|avi|mov|webm|wmv|flv|f4v|swf|mpg|mpeg|asf|3gp|3g2|mkv|webp|heic|heif)",
    re.IGNORECASE,
)
_short_date_regex = re.compile(r"\d{2}-\d{2}-\d{2}")
_iso_date_regex = re.compile(r"\d{4}-\d{2}-\d{2}")

USER_NAME_KEYS = ("nickname", "name", "userName", "user_name")
USER_ID_KEYS = ("redId", "red_id", "userId", "userid", "user_id")
TITLE_KEYS = ("title", "desc", "description", "noteId")
DESCRIPTION_KEYS = ("desc", "description", "title")
TEXT_DATE_KEYS = ("publishTime", "publish_time", "timeText", "time", "displayTime", "createTime")
EPOCH_DATE_KEYS = ("time", "publishTime", "publish_time", "createTime", "timestamp", "timeStamp")

PUBLISH_FORMAT = "%y-%m-%d"
# 2000-01-01T00:00:00Z in milliseconds
EPOCH_FLOOR_MS = 946_684_800_000


def first_non_empty_string(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped:
                return stripped
    return None


def _digits_only(value: str) -> Optional[str]:
    digits = re.sub(r"[^0-9]", "", value)
    return digits or None


def normalize_explicit_date(raw: str) -> Optional[str]:
    """Normalize a literal date string to ``yy-MM-dd``.

    Accepts an embedded ``yy-MM-dd`` / ``yyyy-MM-dd`` substring or a string
    whose first eight digits read as ``yyyyMMdd``.
    """
    text = raw.strip()
    if not text:
        return None

    match = _short_date_regex.search(text)
    if match:
        return match.group(0)

    match = _iso_date_regex.search(text)
    if match:
        try:
            return datetime.strptime(match.group(0), "%Y-%m-%d").strftime(PUBLISH_FORMAT)
        except ValueError:
            pass

    digits = _digits_only(text)
    if digits and len(digits) >= 8:
        try:
            return datetime.strptime(digits[:8], "%Y%m%d").strftime(PUBLISH_FORMAT)
        except ValueError:
            pass
    return None


def format_epoch(raw_value: float) -> Optional[str]:
    """Format a seconds or milliseconds timestamp, rejecting implausible values."""
    value = float(raw_value)
    if value < 1_000_000_000:
        return None
    if value < 1_000_000_000_000:
        value *= 1000
    if value < EPOCH_FLOOR_MS:
        return None
    try:
        return datetime.fromtimestamp(value / 1000).strftime(PUBLISH_FORMAT)
    except (OverflowError, OSError, ValueError):
        return None


def extract_publish_time(note: dict[str, Any]) -> Optional[str]:
    for key in TEXT_DATE_KEYS:
        value = note.get(key)
        if isinstance(value, str):
            normalized = normalize_explicit_date(value)
            if normalized:
                return normalized

    for key in EPOCH_DATE_KEYS:
        value = note.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            formatted = format_epoch(value)
        elif isinstance(value, str) and (digits := _digits_only(value)):
            formatted = format_epoch(float(digits))
        else:
            continue
        if formatted:
            return formatted
    return None


def extract_metadata(note: dict[str, Any]) -> NoteMetadata:
    user_name = None
    user_id = None
    user = note.get("user")
    if isinstance(user, dict):
        user_name = first_non_empty_string(*(user.get(key) for key in USER_NAME_KEYS))
        user_id = first_non_empty_string(*(user.get(key) for key in USER_ID_KEYS))
    if user_id is None:
        user_id = first_non_empty_string(note.get("userId"), note.get("uid"))

    return NoteMetadata(
        user_name=user_name,
        user_id=user_id,
        title=first_non_empty_string(*(note.get(key) for key in TITLE_KEYS)),
        publish_time=extract_publish_time(note),
    )


def extract_stream_urls(stream: dict[str, Any]) -> List[str]:
    urls = []
    for entry in traverse_obj(stream, ("h264", {list})) or []:
        if isinstance(entry, str):
            if entry.startswith("http"):
                urls.append(entry)
        elif isinstance(entry, dict):
            url = first_non_empty_string(entry.get("masterUrl"), entry.get("url"))
            if url:
                urls.append(url)
    return urls


def extract_video_urls(video: dict[str, Any]) -> List[str]:
    """Video URLs by preference: origin key, then H.264 streams, then a bare url."""
    origin_key = traverse_obj(video, ("consumer", "originVideoKey", {str}))
    if origin_key:
        return [f"{VIDEO_ENDPOINT}/{origin_key}"]

    stream = traverse_obj(video, ("media", "stream", {dict})) or traverse_obj(video, ("stream", {dict}))
    if stream:
        urls = extract_stream_urls(stream)
        if urls:
            return urls

    url = first_non_empty_string(video.get("url"))
    return [url] if url else []


def preferred_image_url(image: dict[str, Any]) -> Optional[str]:
    url = first_non_empty_string(image.get("originUrl"), image.get("urlDefault"), image.get("url"))
    if url:
        return url

    trace_id = first_non_empty_string(image.get("traceId"))
    if trace_id:
        return f"{TRACE_ENDPOINT}/{trace_id}"

    for info in traverse_obj(image, ("infoList", {list})) or []:
        if isinstance(info, dict):
            url = first_non_empty_string(info.get("url"))
            if url:
                return url
    return None


def _image_entries(note: dict[str, Any]) -> List[dict[str, Any]]:
    for key in ("imageList", "images"):
        value = note.get(key)
        if isinstance(value, list):
            return [entry for entry in value if isinstance(entry, dict)]
    image = note.get("image")
    if isinstance(image, dict):
        return [image]
    return []


def collect_media(note: dict[str, Any]) -> List[MediaDescriptor]:
    """Walk a single note object and return its media in display order."""
    metadata = extract_metadata(note)
    urls = []

    for key in ("video", "media"):
        value = note.get(key)
        if isinstance(value, dict):
            urls.extend(extract_video_urls(value))

    for image in _image_entries(note):
        url = preferred_image_url(image)
        if url:
            urls.append(url)
        # Live photos carry their motion clip next to the still
        stream = image.get("stream")
        if isinstance(stream, dict):
            urls.extend(extract_stream_urls(stream))

    cover = note.get("cover")
    if isinstance(cover, dict):
        url = preferred_image_url(cover)
        if url:
            urls.append(url)

    return [MediaDescriptor(url=url, metadata=metadata) for url in urls]


def _detail_map_notes(detail_map: dict[str, Any]) -> Iterable[dict[str, Any]]:
    for value in detail_map.values():
        if isinstance(value, dict):
            note = value.get("note")
            yield note if isinstance(note, dict) else value


def _note_root_notes(note_root: dict[str, Any]) -> List[dict[str, Any]]:
    detail_map = note_root.get("noteDetailMap")
    if isinstance(detail_map, dict):
        return list(_detail_map_notes(detail_map))
    if isinstance(note_root.get("note"), dict):
        return [note_root["note"]]
    return [note_root]


def _feed_notes(root: dict[str, Any]) -> List[dict[str, Any]]:
    items = traverse_obj(root, ("feed", "items", {list})) or []
    return [item for item in items if isinstance(item, dict)]


def candidate_note_groups(root: dict[str, Any]) -> List[List[dict[str, Any]]]:
    """Note lists for each known state shape, in the order they are tried."""
    groups = []
    if isinstance(root.get("note"), dict):
        groups.append(_note_root_notes(root["note"]))
    if isinstance(root.get("noteDetailMap"), dict):
        groups.append(list(_detail_map_notes(root["noteDetailMap"])))
    groups.append(_feed_notes(root))
    groups.append([root])
    return groups


def parse_media_from_root(root: dict[str, Any]) -> List[MediaDescriptor]:
    """Structured extraction; tries each note shape until one yields media."""
    for notes in candidate_note_groups(root):
        descriptors = []
        for note in notes:
            descriptors.extend(collect_media(note))
        if descriptors:
            return descriptors
    return []


def extract_urls_from_html(html: str) -> List[str]:
    """Flat regex scan used when no structured state is usable.

    Matches are not filtered by page context, so decorative images on the
    CDN domain are returned as well.
    """
    urls = [match.group(1) for match in _html_img_regex.finditer(html)]
    urls.extend(match.group(0) for match in _html_url_regex.finditer(html))
    return [url for url in urls if is_valid_media_url(url)]


def unique_descriptors(descriptors: Iterable[MediaDescriptor]) -> List[MediaDescriptor]:
    seen = set()
    result = []
    for descriptor in descriptors:
        if descriptor.url not in seen:
            seen.add(descriptor.url)
            result.append(descriptor)
    return result


def parse_post_details(html: str, state: Optional[dict[str, Any]] = None) -> List[MediaDescriptor]:
    """Extract media descriptors from a note page.

    Args:
        html: Raw page markup
        state: Already parsed initial state, parsed from html when omitted

    Returns:
        Descriptors deduplicated by URL, first occurrence first. Empty when
        both the structured walk and the markup scan find nothing.
    """
    if state is None:
        state = parse_initial_state(html)

    if state is not None:
        descriptors = parse_media_from_root(state)
        if descriptors:
            return unique_descriptors(descriptors)
        logger.debug("Initial state present but no media recognized, scanning markup")

    return unique_descriptors(MediaDescriptor(url=url) for url in extract_urls_from_html(html))


def extract_description(html: str, state: Optional[dict[str, Any]] = None) -> Optional[str]:
    """Return the first note's description text, falling back to its title."""
    if state is None:
        state = parse_initial_state(html)
    if state is None:
        return None

    for notes in candidate_note_groups(state):
        for note in notes:
            text = first_non_empty_string(*(note.get(key) for key in DESCRIPTION_KEYS))
            if text:
                return text
    return None
