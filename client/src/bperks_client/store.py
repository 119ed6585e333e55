"""Durable, namespaced key-value storage for offline operation."""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class LocalStore:
    """Stores JSON documents under a directory, one file per key.

    Reads never raise: a missing or unreadable entry is logged and reported
    as ``None``. Writes that fail are logged and dropped.
    """

    def __init__(self, directory: Path):
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def namespace(self, name: str) -> "LocalStore":
        """Return an independent sub-store whose keys cannot collide with ours."""
        return LocalStore(self._directory / name)

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self._directory / f"{digest}{_SUFFIX}"

    def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            return document["value"]
        except Exception:
            logger.exception("Failed to read %r from %s", key, self._directory)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(
                json.dumps({"key": key, "value": value}, default=str),
                encoding="utf-8",
            )
            os.replace(tmp_path, path)
        except Exception:
            logger.exception("Failed to write %r to %s", key, self._directory)
            tmp_path.unlink(missing_ok=True)

    def remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to remove %r from %s", key, self._directory)

    def keys(self) -> list[str]:
        """Return the original key of every readable entry."""
        keys: list[str] = []
        for path in self._entry_paths():
            try:
                keys.append(json.loads(path.read_text(encoding="utf-8"))["key"])
            except Exception:
                logger.exception("Skipping unreadable entry %s", path.name)
        return keys

    def clear(self) -> None:
        """Remove every entry in this namespace. Sub-stores are left alone."""
        for path in self._entry_paths():
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to remove %s", path)

    def size_bytes(self) -> int:
        """Bytes on disk for this namespace and every sub-store under it."""
        if not self._directory.exists():
            return 0
        return sum(path.stat().st_size for path in self._directory.rglob(f"*{_SUFFIX}") if path.is_file())

    def _entry_paths(self) -> list[Path]:
        if not self._directory.exists():
            return []
        return sorted(p for p in self._directory.glob(f"*{_SUFFIX}") if p.is_file())
