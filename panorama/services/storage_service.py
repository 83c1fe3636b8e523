"""File storage helpers."""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


class KeyValueStore(Protocol):
    """Minimal byte store used for client-local persistence."""

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class FileKeyValueStore:
    """Store each key as a single file below ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key) or key in (".", ".."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root / key

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def set(self, key: str, value: bytes) -> None:
        """Write the value atomically, replacing any previous one."""
        path = self._path(key)
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StorageService:
    """Handle saving exported panoramas."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def save_image(self, data: bytes, mime_type: str, stem: str = "panorama") -> Path:
        """Persist an image and return the file path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        suffix = _EXTENSIONS.get(mime_type, ".png")
        stamp = time.time_ns()
        path = self.output_dir / f"{stem}-{stamp}{suffix}"
        while path.exists():
            stamp += 1
            path = self.output_dir / f"{stem}-{stamp}{suffix}"
        path.write_bytes(data)
        logger.info("Saved %d bytes to %s", len(data), path)
        return path

    def cleanup(self, max_items: int = 100) -> int:
        """Limit the number of stored exports; return how many were removed."""
        if not self.output_dir.exists():
            return 0
        files = sorted(
            (path for path in self.output_dir.iterdir() if path.is_file() and path.suffix in _EXTENSIONS.values()),
            key=lambda path: path.stat().st_mtime_ns,
            reverse=True,
        )
        stale = files[max(max_items, 0):]
        for path in stale:
            path.unlink(missing_ok=True)
        if stale:
            logger.info("Removed %d old exports from %s", len(stale), self.output_dir)
        return len(stale)
