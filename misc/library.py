"""Media library collaborators that persist retrieved files."""

import logging
import os
import shutil
from abc import ABC, abstractmethod

from xhs_api.exceptions import XHSLibraryUnsupportedError, XHSPermissionDeniedError

logger = logging.getLogger(__name__)


class MediaLibrary(ABC):
    """Destination for retrieved media.

    ``save`` may raise XHSLibraryUnsupportedError for duplicates or formats
    it will not take; callers then try ``save_fallback``.
    """

    async def ensure_permission(self) -> None:
        """Raise XHSPermissionDeniedError when saving is not possible."""

    @abstractmethod
    async def save(self, file_path: str, is_video: bool) -> str:
        ...

    async def save_fallback(self, file_path: str, is_video: bool) -> str:
        return await self.save(file_path, is_video)


class FolderLibrary(MediaLibrary):
    """Stores images and videos in separate subfolders of a root directory.

    A file whose name already exists is refused as a duplicate by ``save``;
    ``save_fallback`` stores it under the next free ``name (n).ext``.
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _folder(self, is_video: bool) -> str:
        return os.path.join(self.root, "videos" if is_video else "images")

    async def ensure_permission(self) -> None:
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as e:
            raise XHSPermissionDeniedError(f"Cannot create library folder {self.root}: {e}") from e
        if not os.access(self.root, os.W_OK):
            raise XHSPermissionDeniedError(f"Library folder {self.root} is not writable")

    def _move(self, file_path: str, destination: str) -> str:
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            shutil.move(file_path, destination)
        except PermissionError as e:
            raise XHSPermissionDeniedError(f"Cannot write {destination}: {e}") from e
        except OSError as e:
            raise XHSLibraryUnsupportedError(f"Cannot store {destination}: {e}") from e
        logger.debug(f"Saved {file_path} -> {destination}")
        return destination

    async def save(self, file_path: str, is_video: bool) -> str:
        destination = os.path.join(self._folder(is_video), os.path.basename(file_path))
        if os.path.exists(destination):
            raise XHSLibraryUnsupportedError(f"{os.path.basename(destination)} already exists in library")
        return self._move(file_path, destination)

    async def save_fallback(self, file_path: str, is_video: bool) -> str:
        folder = self._folder(is_video)
        stem, extension = os.path.splitext(os.path.basename(file_path))
        counter = 1
        destination = os.path.join(folder, f"{stem}{extension}")
        while os.path.exists(destination):
            counter += 1
            destination = os.path.join(folder, f"{stem} ({counter}){extension}")
        return self._move(file_path, destination)
