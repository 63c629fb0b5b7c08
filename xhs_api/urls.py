"""Share-link classification and CDN URL normalization."""

import re
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from .models import MediaType

CDN_DOMAIN = "xhscdn.com"
SHORT_LINK_DOMAIN = "xhslink.com"
IMAGE_ENDPOINT = "https://ci.xiaohongshu.com"
VIDEO_ENDPOINT = "https://sns-video-bd.xhscdn.com"
TRACE_ENDPOINT = "https://sns-img-qc.xhscdn.com"

VIDEO_MARKERS = (".mp4", ".mov", ".avi", ".webm", "video", "stream", "sns-video")
MEDIA_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".mp4", ".mov")


class LinkKind(str, Enum):
    SHORT = "short"
    SHARE = "share"
    EXPLORE = "explore"
    USER = "user"


# Evaluated per token in this order, first match wins
LINK_PATTERNS: List[Tuple[re.Pattern, LinkKind]] = [
    (
        re.compile(r"(?:https?://)?xhslink\.com/[^\s\"<>\\^`{|}，。；！？、【】《》]+", re.IGNORECASE),
        LinkKind.SHORT,
    ),
    (
        re.compile(r"(?:https?://)?www\.xiaohongshu\.com/discovery/item/\S+", re.IGNORECASE),
        LinkKind.SHARE,
    ),
    (
        re.compile(r"(?:https?://)?www\.xiaohongshu\.com/explore/\S+", re.IGNORECASE),
        LinkKind.EXPLORE,
    ),
    (
        re.compile(r"(?:https?://)?www\.xiaohongshu\.com/user/profile/[a-z0-9]+/\S+", re.IGNORECASE),
        LinkKind.USER,
    ),
]

_note_id_regex = re.compile(r"(?:explore|item)/([a-zA-Z0-9_\-]+)/?(?:\?|$)", re.IGNORECASE)
_user_note_id_regex = re.compile(r"user/profile/[a-z0-9]+/([a-zA-Z0-9_\-]+)/?(?:\?|$)", re.IGNORECASE)


def classify_token(token: str) -> Optional[Tuple[str, LinkKind]]:
    """Return the first link pattern match inside a single token."""
    for pattern, kind in LINK_PATTERNS:
        match = pattern.search(token)
        if match:
            return match.group(0), kind
    return None


def extract_links(text: str) -> List[Tuple[str, LinkKind]]:
    """Find share links in free-form text, one per whitespace-delimited token.

    Tokens are matched independently so that a malformed token never
    bleeds into its neighbours.
    """
    results = []
    for token in text.split():
        matched = classify_token(token)
        if matched:
            results.append(matched)
    return results


def ensure_scheme(link: str) -> str:
    link = link.strip()
    if link and not link.lower().startswith("http"):
        link = "https://" + link
    return link


def is_short_link(url: str) -> bool:
    return SHORT_LINK_DOMAIN in url.lower()


def extract_post_id(url: str) -> Optional[str]:
    """Best-effort note ID from a note, profile or short link URL."""
    match = _note_id_regex.search(url) or _user_note_id_regex.search(url)
    if match:
        return match.group(1)

    if is_short_link(url):
        components = [part for part in url.split("/") if part]
        last = components[-1].split("?")[0] if components else ""
        if last and last != "o":
            return last
        if len(components) > 1:
            return components[-2].split("?")[0] or None
    return None


def is_video_url(url: str) -> bool:
    lower = url.lower()
    return any(marker in lower for marker in VIDEO_MARKERS)


def media_type_for(url: str) -> MediaType:
    return MediaType.VIDEO if is_video_url(url) else MediaType.IMAGE


def is_valid_media_url(url: str) -> bool:
    lower = url.lower()
    if CDN_DOMAIN in lower:
        return True
    return any(ext in lower for ext in MEDIA_EXTENSIONS)


def extract_image_token(url: str) -> Optional[str]:
    """Pull the asset token out of a CDN image URL.

    Example:
        >>> extract_image_token("https://sns-webpic-qc.xhscdn.com/202401/abcd/1040g2sg!nd_dft_wlteh_webp_3")
        '1040g2sg'
    """
    sanitized = url.replace("\\/", "/").replace("\\u002F", "/").replace("\\", "").strip()

    http_index = sanitized.lower().find("http")
    if http_index >= 0:
        sanitized = sanitized[http_index:]

    parts = sanitized.split("/")
    if len(parts) < 6:
        return None

    token = "/".join(parts[5:])
    token = token.split("!")[0].split("?")[0]
    return token or None


def normalize_image_url(url: str) -> str:
    """Rewrite a CDN thumbnail URL to its full-resolution JPEG endpoint."""
    if CDN_DOMAIN not in url or is_video_url(url):
        return url
    token = extract_image_token(url)
    if not token:
        return url
    return f"{IMAGE_ENDPOINT}/{token}?imageView2/format/jpg"


def normalize_url(url: str) -> Tuple[str, MediaType]:
    """Classify a raw media URL and normalize it when it is an image."""
    media_type = media_type_for(url)
    if media_type is MediaType.IMAGE:
        return normalize_image_url(url), media_type
    return url, media_type


def absolutize(url: str) -> Optional[str]:
    """Return an absolute http(s) URL, or None when the URL has no network location."""
    url = url.strip().replace("\\u002F", "/").replace("\\/", "/")
    if url.startswith("//"):
        url = "https:" + url
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return url
