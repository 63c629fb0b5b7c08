"""XHS (Xiaohongshu) note media extraction.

This package turns free-form share text into downloadable media: it finds
share links, resolves short links, reads the note page's embedded state,
extracts image/video URLs with note metadata, normalizes CDN URLs to their
full-resolution form, names the files and retrieves them.

Example:
    >>> from xhs_api import Pipeline, NamingPreferences
    >>>
    >>> pipeline = Pipeline(preferences=NamingPreferences(enabled=True))
    >>> result = await pipeline.run("Look at this http://xhslink.com/a/AbCdEf")
    >>> for path in result.saved:
    ...     print(path)
"""

from .client import XHSClient
from .events import EventChannel, EventKind, PipelineEvent, RunState
from .exceptions import (
    XHSError,
    XHSExtractionEmptyError,
    XHSFetchFailedError,
    XHSInvalidInputError,
    XHSLibraryUnsupportedError,
    XHSNoMediaFoundError,
    XHSPermissionDeniedError,
    XHSRedirectUnresolvedError,
    XHSRetrievalFailedError,
)
from .models import (
    LinkContext,
    MediaDescriptor,
    MediaType,
    NamingPreferences,
    NoteMetadata,
    RemoteMedia,
)
from .pipeline import Pipeline, RunResult
from .proxy_manager import ProxyManager

__all__ = [
    # Client
    "XHSClient",
    "Pipeline",
    "RunResult",
    # Proxy
    "ProxyManager",
    # Events
    "EventChannel",
    "EventKind",
    "PipelineEvent",
    "RunState",
    # Models
    "LinkContext",
    "MediaDescriptor",
    "MediaType",
    "NamingPreferences",
    "NoteMetadata",
    "RemoteMedia",
    # Exceptions
    "XHSError",
    "XHSInvalidInputError",
    "XHSRedirectUnresolvedError",
    "XHSFetchFailedError",
    "XHSExtractionEmptyError",
    "XHSPermissionDeniedError",
    "XHSRetrievalFailedError",
    "XHSNoMediaFoundError",
    "XHSLibraryUnsupportedError",
]
