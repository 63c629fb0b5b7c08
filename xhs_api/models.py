"""Data models for XHS note extraction."""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from data.config import DEFAULT_TEMPLATE, config

logger = logging.getLogger(__name__)

ENABLE_KEY = "use_custom_naming_format"
TEMPLATE_KEY = "custom_naming_template"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class LinkContext:
    """A discovered share link after optional short-link resolution.

    Attributes:
        source_url: Link as found in the share text (scheme added if missing)
        resolved_url: Canonical note URL (equals source_url when unresolved)
        post_id: Best-effort note ID parsed from the resolved URL
    """

    source_url: str
    resolved_url: str
    post_id: Optional[str] = None


@dataclass(frozen=True)
class NoteMetadata:
    """Per-note metadata shared by every media item of that note.

    publish_time is always formatted as ``yy-MM-dd`` when present.
    """

    user_name: Optional[str] = None
    user_id: Optional[str] = None
    title: Optional[str] = None
    publish_time: Optional[str] = None


@dataclass(frozen=True)
class MediaDescriptor:
    """Raw media URL found in a note, before normalization and naming."""

    url: str
    metadata: NoteMetadata = field(default_factory=NoteMetadata)


@dataclass(frozen=True)
class RemoteMedia:
    """A normalized, named media item ready to be retrieved.

    Attributes:
        url: Absolute, normalized download URL
        media_type: MediaType.IMAGE or MediaType.VIDEO
        file_base_name: Sanitized file name stem, unique within a run
        original_url: Raw URL as extracted from the page
        id: Opaque unique token
    """

    url: str
    media_type: MediaType
    file_base_name: str
    original_url: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def is_video(self) -> bool:
        return self.media_type is MediaType.VIDEO


@dataclass(frozen=True)
class NamingPreferences:
    """User-configurable file naming, read once per run."""

    enabled: bool = False
    template: str = DEFAULT_TEMPLATE

    @classmethod
    def load(cls, path: Optional[str] = None) -> NamingPreferences:
        """Load preferences from the settings file, falling back to env config."""
        naming_config = config["naming"]
        enabled = naming_config["enabled"]
        template = naming_config["template"]

        path = path or naming_config["settings_file"]
        if path and os.path.isfile(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
                enabled = bool(stored.get(ENABLE_KEY, enabled))
                template = stored.get(TEMPLATE_KEY) or template
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to read naming settings from {path}: {e}")

        template = (template or "").strip()
        return cls(enabled=enabled, template=template or DEFAULT_TEMPLATE)

    def save(self, path: Optional[str] = None) -> None:
        """Persist both preferences to the settings file."""
        path = path or config["naming"]["settings_file"]
        with open(path, "w", encoding="utf-8") as f:
            json.dump({ENABLE_KEY: self.enabled, TEMPLATE_KEY: self.template}, f, ensure_ascii=False, indent=2)
        logger.debug(f"Saved naming settings to {path}")
