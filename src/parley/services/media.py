# src/parley/services/media.py
"""Storage lifecycle for media attached to direct messages."""

from __future__ import annotations

import logging
import mimetypes
import secrets
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final, Protocol

from parley.core.errors import ValidationError
from parley.core.settings import settings

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES: Final[frozenset[str]] = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp"}
)
ALLOWED_VIDEO_TYPES: Final[frozenset[str]] = frozenset(
    {"video/mp4", "video/webm", "video/quicktime"}
)
ALLOWED_MEDIA_TYPES: Final[frozenset[str]] = ALLOWED_IMAGE_TYPES | ALLOWED_VIDEO_TYPES

# Used when the uploaded name carries no usable extension.
_DEFAULT_EXTENSIONS: Final[dict[str, str]] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
}
_MAX_EXTENSION_LENGTH: Final[int] = 10


class BlobStore(Protocol):
    """Minimal interface of the media blob store."""

    def put(self, key: str, data: bytes) -> None: ...

    def exists(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...


class FilesystemBlobStore:
    """Blob store backed by a flat directory on local disk."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not key or PurePosixPath(key).name != key or key in {".", ".."} or "\\" in key:
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / key

    def put(self, key: str, data: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self._path(key).write_bytes(data)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class StoredMedia:
    """Location and kind of a stored upload."""

    url: str
    type: str
    filename: str
    original_name: str | None = None


def _extension_for(original_name: str | None, mime_type: str) -> str:
    if original_name:
        suffix = PurePosixPath(original_name.replace("\\", "/")).suffix.lower()
        if 1 < len(suffix) <= _MAX_EXTENSION_LENGTH and suffix[1:].isalnum():
            return suffix
    return _DEFAULT_EXTENSIONS.get(mime_type) or mimetypes.guess_extension(mime_type) or ""


class MediaService:
    """Validates, stores and releases message media blobs."""

    def __init__(
        self,
        blobs: BlobStore | None = None,
        *,
        url_prefix: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.blobs = blobs if blobs is not None else FilesystemBlobStore(settings.media_upload_dir)
        self.url_prefix = (url_prefix if url_prefix is not None else settings.media_url_prefix).rstrip("/")
        self.max_bytes = max_bytes if max_bytes is not None else settings.media_max_bytes

    def store(
        self,
        file_bytes: bytes,
        mime_type: str,
        original_name: str | None = None,
    ) -> StoredMedia:
        """Persist an upload under a random name and return its public location.

        The original filename only contributes its extension.

        Raises:
            ValidationError: For a disallowed mime type, empty or oversized payload.
        """
        if mime_type not in ALLOWED_MEDIA_TYPES:
            raise ValidationError(
                "Invalid file type. Only JPEG, PNG, GIF, WEBP, MP4, WEBM and MOV are allowed."
            )
        if not file_bytes:
            raise ValidationError("No file uploaded")
        if len(file_bytes) > self.max_bytes:
            raise ValidationError(f"File exceeds the maximum size of {self.max_bytes} bytes")

        filename = secrets.token_hex(16) + _extension_for(original_name, mime_type)
        self.blobs.put(filename, file_bytes)
        media_type = "image" if mime_type in ALLOWED_IMAGE_TYPES else "video"
        logger.info("Stored %s upload as %s (%d bytes)", media_type, filename, len(file_bytes))
        return StoredMedia(
            url=f"{self.url_prefix}/{filename}",
            type=media_type,
            filename=filename,
            original_name=original_name,
        )

    def key_for_url(self, url: str) -> str | None:
        """Return the blob key addressed by a media URL, if it is one of ours."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        name = url[len(prefix):]
        if not name or name in {".", ".."} or "/" in name or "\\" in name:
            return None
        return name

    def release(self, url: str | None) -> None:
        """Delete the blob behind ``url``.

        Best effort: a missing blob is a no-op and storage errors are logged
        and never raised.
        """
        if not url:
            return
        key = self.key_for_url(url)
        if key is None:
            logger.warning("Ignoring release of unrecognised media URL %r", url)
            return
        try:
            if not self.blobs.exists(key):
                return
            self.blobs.delete(key)
        except Exception:
            logger.error("Failed to delete media blob %s", key, exc_info=True)
            return
        logger.info("Deleted media blob %s", key)


def get_media_service() -> MediaService:
    """Return a media service bound to the configured upload directory."""
    return MediaService()
