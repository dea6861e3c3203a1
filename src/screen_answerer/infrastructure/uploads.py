"""Scratch storage for uploaded screenshots.

Uploaded images are streamed to a shared scratch directory under
collision-resistant names (millisecond timestamp plus random suffix), size
limited while streaming, and verified with Pillow before any consumer
sees them. Files are always transient: the request that stored a file
deletes it through the temporary file registry, and anything left behind
is removed by ``sweep_orphans``.

File opens, chunk writes and image verification run in worker threads
(``asyncio.to_thread``) so a large upload never blocks the event loop.

Dependencies:
    - Pillow (PIL): verifies that the stored bytes decode as an image
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from screen_answerer.domain.entities import StoredUpload
from screen_answerer.domain.exceptions import (
    InvalidUploadError,
    StorageError,
    UploadTooLargeError,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_FILE_BYTES = 5 * 1024 * 1024

_SAFE_SUFFIX = re.compile(r"^\.[a-z0-9]{1,5}$")
_SUFFIX_BY_CONTENT_TYPE = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class UploadSource(Protocol):
    """The subset of ``starlette.datastructures.UploadFile`` the store reads."""

    filename: str | None
    content_type: str | None

    async def read(self, size: int = -1) -> bytes: ...


class UploadStore:
    """Writes, verifies and removes uploaded images in the scratch directory.

    Attributes:
        directory: Scratch directory; created if absent.
        max_file_bytes: Per-file size limit (default 5 MiB).
    """

    __slots__ = ("directory", "max_file_bytes")

    def __init__(
        self,
        directory: str | Path = "uploads",
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self.directory = Path(directory)
        self.max_file_bytes = max_file_bytes

    def ensure_directory(self) -> Path:
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info("Created uploads directory at %s", self.directory)
        return self.directory

    def _new_path(self, filename: str | None, content_type: str | None) -> Path:
        suffix = Path(filename or "").suffix.lower()
        if not _SAFE_SUFFIX.match(suffix):
            suffix = _SUFFIX_BY_CONTENT_TYPE.get((content_type or "").lower(), "")
        unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        return self.directory / f"{unique}{suffix}"

    async def save(self, upload: UploadSource) -> StoredUpload:
        """Persist ``upload`` and return where it landed.

        Raises:
            InvalidUploadError: Content type is not ``image/*`` or the bytes
                do not decode as an image.
            UploadTooLargeError: More than ``max_file_bytes`` were sent.
            StorageError: The file could not be written.

        Note:
            Nothing is left on disk when this raises.
        """
        content_type = upload.content_type or ""
        if not content_type.lower().startswith("image/"):
            raise InvalidUploadError("Only image files are allowed!")

        self.ensure_directory()
        path = self._new_path(upload.filename, content_type)
        written = 0
        try:
            handle = await asyncio.to_thread(path.open, "wb")
            try:
                while chunk := await upload.read(CHUNK_SIZE):
                    written += len(chunk)
                    if written > self.max_file_bytes:
                        raise UploadTooLargeError(self.max_file_bytes)
                    await asyncio.to_thread(handle.write, chunk)
            finally:
                await asyncio.to_thread(handle.close)
            if written == 0:
                raise InvalidUploadError("Uploaded image is empty")
            await asyncio.to_thread(_verify_image, path)
        except (InvalidUploadError, UploadTooLargeError):
            self.discard(path)
            raise
        except OSError as exc:
            self.discard(path)
            raise StorageError(f"Could not store upload: {exc}") from exc

        logger.debug("upload_stored path=%s bytes=%d", path, written)
        return StoredUpload(
            path=path,
            original_filename=upload.filename,
            content_type=content_type,
            size_bytes=written,
        )

    def discard(self, path: str | Path) -> None:
        """Best-effort delete of a file that was never registered."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.error("storage_error: discard failed path=%s error=%s", path, exc)

    def sweep_orphans(self, max_age: float, in_use: set[str] | None = None) -> list[Path]:
        """Delete scratch files older than ``max_age`` seconds that are not in use.

        Returns:
            Paths that were removed.
        """
        if not self.directory.exists():
            return []
        protected = in_use or set()
        cutoff = time.time() - max_age
        removed: list[Path] = []
        for path in self.directory.iterdir():
            if not path.is_file() or str(path) in protected:
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)
                    removed.append(path)
            except OSError as exc:
                logger.error("storage_error: sweep failed path=%s error=%s", path, exc)
        if removed:
            logger.warning("orphan_uploads_removed count=%d", len(removed))
        return removed


def _verify_image(path: Path) -> None:
    try:
        with Image.open(path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise InvalidUploadError(f"Invalid image data: {exc}") from exc


__all__ = [
    "DEFAULT_MAX_FILE_BYTES",
    "UploadSource",
    "UploadStore",
]
