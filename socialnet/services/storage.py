"""
Media storage for post attachments.

Files are written under ``media_root`` and addressed by an opaque
``storage_id`` so posts can delete their media later.
"""
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import Settings
from ..logging_config import get_logger

logger = get_logger("storage")

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".avi"}


class StorageError(Exception):
    pass


@dataclass
class StoredMedia:
    storage_id: str
    url: str
    media_type: str
    thumbnail: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.media_type,
            "url": self.url,
            "storage_id": self.storage_id,
            "thumbnail": self.thumbnail,
        }


def media_type_for(filename: str, content_type: Optional[str] = None) -> Optional[str]:
    if content_type:
        if content_type.startswith("image/"):
            return "image"
        if content_type.startswith("video/"):
            return "video"
    ext = Path(filename or "").suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    return None


class LocalMediaStorage:
    """Stores uploads on the local filesystem."""

    def __init__(self, settings: Settings):
        self.root = Path(settings.media_root)
        self.base_url = settings.media_base_url.rstrip("/")
        self.max_bytes = settings.max_upload_bytes

    def save(self, filename: str, content: bytes, content_type: Optional[str] = None) -> StoredMedia:
        media_type = media_type_for(filename, content_type)
        if media_type is None:
            raise StorageError("Only image and video uploads are supported")
        if len(content) > self.max_bytes:
            raise StorageError("File too large")

        ext = Path(filename).suffix.lower()
        storage_id = f"posts/{secrets.token_hex(16)}{ext}"
        path = self.root / storage_id
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

        logger.info("Stored media", storage_id=storage_id, size=len(content), media_type=media_type)
        return StoredMedia(
            storage_id=storage_id,
            url=f"{self.base_url}/{storage_id}",
            media_type=media_type,
        )

    def delete(self, storage_id: str) -> bool:
        path = (self.root / storage_id).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError("Invalid storage id")
        if not path.exists():
            return False
        os.remove(path)
        logger.info("Deleted media", storage_id=storage_id)
        return True
