"""
Image Storage Module
====================

Provides abstract and concrete implementations for storing venue photos
downloaded from the mapping API.

Layout (relative to the storage root):
    google_place_images/{venue_slug_or_id}/{version}_{position}.{ext}
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from trivia_ingest.ingestion.registry import get_default_registry

logger = logging.getLogger(__name__)

STORAGE_DIR = "google_place_images"
IMAGE_VERSIONS = ("original", "thumb")

# Map MIME types to file extensions
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
}


def extension_for(mime_type: str | None) -> str:
    """Get file extension for an image MIME type, defaulting to jpg."""
    return MIME_EXTENSIONS.get((mime_type or "").split(";")[0].strip().lower(), "jpg")


def image_path(venue_key: str, version: str, position: int, extension: str = "jpg") -> str:
    """Relative storage path for one version of one venue photo."""
    return f"{STORAGE_DIR}/{venue_key}/{version}_{position}.{extension}"


@dataclass
class StoredImage:
    """Result of writing one image."""

    relative_path: str
    size_bytes: int


class ImageStorage(ABC):
    """
    Abstract base class for venue photo storage.

    Paths handed in and out are relative to the storage root so they can be
    persisted on the venue row independent of where files live.
    """

    @abstractmethod
    def save_image(self, content: bytes, relative_path: str) -> StoredImage:
        """
        Write image bytes.

        Raises:
            OSError: If the image cannot be written
        """
        pass

    @abstractmethod
    def delete_image(self, relative_path: str) -> bool:
        """
        Delete an image.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            OSError: If the file exists but cannot be removed
        """
        pass

    @abstractmethod
    def exists(self, relative_path: str) -> bool:
        pass


class LocalImageStorage(ImageStorage):
    """Local filesystem storage for venue photos."""

    def __init__(self, base_path: str | Path) -> None:
        """
        Initialize local file storage.

        Args:
            base_path: Base directory for storing images
        """
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, relative_path: str) -> Path:
        path = (self.base_path / relative_path).resolve()
        if not path.is_relative_to(self.base_path):
            raise ValueError(f"Path escapes storage root: {relative_path}")
        return path

    def save_image(self, content: bytes, relative_path: str) -> StoredImage:
        """Save image bytes to the local filesystem."""
        file_path = self._resolve(relative_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "wb") as f:
            f.write(content)
        return StoredImage(relative_path=relative_path, size_bytes=len(content))

    def delete_image(self, relative_path: str) -> bool:
        """Delete an image file."""
        file_path = self._resolve(relative_path)
        if not file_path.exists():
            return False
        file_path.unlink()
        return True

    def exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).exists()


def get_default_storage() -> LocalImageStorage:
    """
    Get the default storage instance.

    Uses the PHOTO_STORAGE_PATH environment variable or the
    global.photo_storage_path entry of sources.yaml.
    """
    storage_path = os.environ.get(
        "PHOTO_STORAGE_PATH", get_default_registry().global_config.photo_storage_path
    )
    return LocalImageStorage(storage_path)
