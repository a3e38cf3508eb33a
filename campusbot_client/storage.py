"""
storage.py — Durable Client Storage

A string key-value substrate that survives restarts. Each component writes
only its own keys (the Cart Store the cart key, the Session Manager the token
and user keys).

Backends:
    - MemoryStorage: process-local, used by tests and throwaway sessions.
    - FileStorage: one JSON document on disk, rewritten atomically per write.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

log = logging.getLogger(__name__)


class KeyValueStorage:
    """Interface of the durable storage backends."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key):
        return self._data.get(key)

    def set_item(self, key, value):
        self._data[key] = value

    def remove_item(self, key):
        self._data.pop(key, None)


class FileStorage(KeyValueStorage):
    """
    JSON-file-backed storage.

    The whole document is read on construction and rewritten on every change
    through a temporary file followed by os.replace(), so a crash leaves either
    the previous or the new document on disk.

    Args:
        path (str | Path): Location of the JSON document. Parent directories are created.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Storage file {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            log.warning(f"Storage file {self.path} has unexpected content, starting empty.")
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self):
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".storage-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_item(self, key):
        return self._data.get(key)

    def set_item(self, key, value):
        self._data[key] = value
        self._write()

    def remove_item(self, key):
        if key in self._data:
            del self._data[key]
            self._write()
