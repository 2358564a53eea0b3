"""Media storage for uploaded verification videos and images."""

import asyncio
import uuid
from pathlib import Path
from typing import Protocol

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

PUBLIC_PREFIX = "/uploads"

_CONTENT_TYPE_EXTENSIONS = {
    "video/webm": ".webm",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class MediaStorage(Protocol):
    async def save(self, content: bytes, filename: str | None, content_type: str | None) -> str:
        """Persist content and return its public URL."""
        ...


class LocalMediaStorage:
    """Writes uploads under a directory served at /uploads."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _write(self, target: Path, content: bytes) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    @staticmethod
    def _extension(filename: str | None, content_type: str | None) -> str:
        suffix = Path(filename or "").suffix.lower()
        if suffix and len(suffix) <= 6 and suffix[1:].isalnum():
            return suffix
        return _CONTENT_TYPE_EXTENSIONS.get((content_type or "").lower(), ".bin")

    async def save(self, content: bytes, filename: str | None, content_type: str | None) -> str:
        name = f"{uuid.uuid4().hex}{self._extension(filename, content_type)}"
        target = self.root / name

        await asyncio.to_thread(self._write, target, content)

        logger.info("Media stored", name=name, size_bytes=len(content))
        return f"{PUBLIC_PREFIX}/{name}"
