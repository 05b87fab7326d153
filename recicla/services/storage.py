"""
Object storage boundary for delivery, reward and receipt photos.

Only ``upload`` and ``delete`` are consumed by the core. ``LocalObjectStorage``
keeps files under ``settings.MEDIA_ROOT`` and hands out URLs below
``settings.MEDIA_URL``.
"""
import logging
import uuid
from pathlib import Path
from typing import Protocol

from ..core.config import settings

logger = logging.getLogger(__name__)

DELIVERIES_PATH = "deliveries"


class StorageError(Exception):
    pass


class ObjectStorage(Protocol):
    def upload(self, data: bytes, path: str) -> str: ...

    def delete(self, url: str) -> None: ...


def unique_name(folder: str, suffix: str = ".jpg") -> str:
    return f"{folder}/{uuid.uuid4().hex}{suffix}"


class LocalObjectStorage:
    def __init__(self, root: str | Path | None = None, base_url: str | None = None):
        self.root = Path(root or settings.MEDIA_ROOT)
        self.base_url = (base_url or settings.MEDIA_URL).rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Path escapes the media root: {path}")
        return target

    def upload(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to save {path}: {e}") from e
        return f"{self.base_url}/{path}"

    def delete(self, url: str) -> None:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            raise StorageError(f"Not a URL served by this storage: {url}")
        target = self._resolve(url[len(prefix):])
        try:
            target.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {url}: {e}") from e
