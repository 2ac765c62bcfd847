"""
Durable local key-value store for the household client.

One JSON document per key under a directory (SCRIBE_DATA_PATH by default).
Writes go through write_json_atomic, so a crash leaves either the old or the
new document, never a torn one.
"""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Any, Optional

from scribe_printer.core.config import ensure_dir, get_data_path, write_json_atomic

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class LocalStore:
    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(ensure_dir(directory or get_data_path()))
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        """
        Held by callers doing read-modify-write on a key.
        """
        return self._lock

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """
        Raises json.JSONDecodeError if the document exists but is not valid JSON.
        """
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return default
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            write_json_atomic(value, str(self._path(key)))

    def delete(self, key: str) -> None:
        with self._lock:
            self._path(key).unlink(missing_ok=True)


__all__ = ["LocalStore"]
