"""ChatBridge – On-disk media store.

Inbound images are written once under ``{timestamp}_{message_id}.{ext}`` and
served from a public base URL. A file is published under its final name only
once fully written, and the first writer of a message wins.
"""

from __future__ import annotations

import asyncio
import base64
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()

_EXTENSIONS = {
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class ImageHandle:
    """A persisted image: its public URL and where it lives on disk."""
    url: str
    path: Path
    mime_type: str


def image_extension(mime_type: str) -> str | None:
    """File extension for an image mimetype, None for non-images."""
    base = mime_type.split(";", 1)[0].strip().lower()
    if not base.startswith("image/"):
        return None
    if base in _EXTENSIONS:
        return _EXTENSIONS[base]
    subtype = _UNSAFE.sub("", base.split("/", 1)[1].replace("+", "_"))
    return subtype or None


def safe_component(value: str) -> str:
    """Strip path separators and other unsafe characters from a filename part."""
    cleaned = _UNSAFE.sub("_", value).strip("._")
    return cleaned or "media"


class MediaStore:
    def __init__(self, media_dir: str | Path, public_base_url: str) -> None:
        self.media_dir = Path(media_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def filename_for(self, message_id: str, timestamp: int, mime_type: str) -> str | None:
        ext = image_extension(mime_type)
        if ext is None:
            return None
        return f"{int(timestamp)}_{safe_component(message_id)}.{ext}"

    def public_url(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    async def persist_image(
        self, data: bytes, mime_type: str, message_id: str, timestamp: int
    ) -> ImageHandle | None:
        """Write an image once and return its handle.

        A second call for the same (message_id, timestamp) returns the existing
        file's handle without writing. Returns None, and logs, when the payload
        is empty, not an image, or the write fails.
        """
        filename = self.filename_for(message_id, timestamp, mime_type)
        if filename is None:
            logger.warning("media.unsupported_mimetype", mime_type=mime_type, message_id=message_id)
            return None
        if not data:
            logger.warning("media.empty_payload", message_id=message_id)
            return None

        path = self.media_dir / filename
        try:
            created = await asyncio.to_thread(self._write_once, path, data)
        except OSError as e:
            logger.error("media.write_failed", path=str(path), error=str(e))
            return None

        logger.info("media.persisted" if created else "media.already_present", file=filename, size=len(data))
        return ImageHandle(url=self.public_url(filename), path=path, mime_type=mime_type.split(";", 1)[0].strip())

    def _write_once(self, path: Path, data: bytes) -> bool:
        """Write ``data`` to a hidden temp file, then hard-link it into place.

        The final name only ever points at a complete file; losing the link race
        means another writer already published it.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=path.parent, prefix=f".{path.name}.", suffix=".part", delete=False) as fh:
            partial = Path(fh.name)
        try:
            partial.write_bytes(data)
            os.link(partial, path)
        except FileExistsError:
            return False
        finally:
            partial.unlink(missing_ok=True)
        return True

    async def data_url(self, handle: ImageHandle) -> str | None:
        """Inline the image as a base64 data URL, for providers that cannot reach the public URL."""
        try:
            raw = await asyncio.to_thread(handle.path.read_bytes)
        except OSError as e:
            logger.error("media.read_failed", path=str(handle.path), error=str(e))
            return None
        return f"data:{handle.mime_type};base64,{base64.b64encode(raw).decode('ascii')}"

    async def prune(self, max_age_seconds: float) -> int:
        """Delete media files older than ``max_age_seconds``. Returns the count removed."""
        return await asyncio.to_thread(self._prune, max_age_seconds)

    def _prune(self, max_age_seconds: float) -> int:
        if not self.media_dir.is_dir():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self.media_dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("media.prune_failed", path=str(path), error=str(e))
        if removed:
            logger.info("media.pruned", removed=removed, max_age_s=max_age_seconds)
        return removed
