"""Durable key-value store backed by one JSON file per key.

Used for the local edit queue and the cached project snapshots.  Every
``set()`` writes to a temp file in the same directory and then calls
``os.replace()``, so a crash leaves either the old or the new value for a
key, never a partial one.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class JsonKeyValueStore:
    """Small-blob persistent store, crash-consistent per key.

    Args:
        root: Directory holding one file per key.  Created on first write.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def get(self, key: str) -> Any | None:
        """Return the decoded value for *key*, or ``None`` if absent.

        Raises:
            ValueError: If the stored file is not valid JSON.
            OSError: If the file exists but cannot be read.
        """
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def set(self, key: str, value: Any) -> None:
        """Persist *value* under *key* atomically.

        Raises:
            OSError: If the directory or file cannot be written.
            TypeError: If *value* is not JSON-serialisable.
        """
        self._root.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self._root), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, ensure_ascii=False)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> None:
        """Remove *key*.  No-op if absent."""
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self, prefix: str = "") -> list[str]:
        """Return all stored keys starting with *prefix*, sorted."""
        if not self._root.exists():
            return []
        found = []
        for path in self._root.iterdir():
            if not path.name.endswith(_SUFFIX):
                continue
            key = unquote(path.name[: -len(_SUFFIX)])
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)

    def _path(self, key: str) -> Path:
        return self._root / f"{quote(key, safe='')}{_SUFFIX}"
