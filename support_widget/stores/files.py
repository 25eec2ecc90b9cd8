"""JSON file backed key-value store for visitor-side durable state."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock

from .base import StorageUnavailableError

logger = logging.getLogger(__name__)


class JsonFileKeyValueStore:
    """Persist string keys in a single JSON document.

    Writes go to a temporary sibling file that is then renamed over the
    target, so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._load().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._dump(data)

    def _load(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {self._path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt key-value file %s", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, str]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot write {self._path}: {exc}") from exc
