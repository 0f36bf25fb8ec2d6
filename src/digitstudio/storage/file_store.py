"""JSON-file storage backend so the namespace survives between CLI runs."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from digitstudio.errors import StorageError
from digitstudio.storage.memory import InMemoryStorage

logger = logging.getLogger(__name__)


class JsonFileStorage(InMemoryStorage):
    """Namespace persisted as a single JSON object on disk.

    Every mutation rewrites the whole file through a temporary file and
    os.replace, so a crash never leaves a half-written namespace behind.
    """

    def __init__(
        self,
        path: str | Path,
        quota_bytes: int | None = None,
        char_width_bytes: int = 2,
    ):
        self.path = Path(path)
        super().__init__(self._read(), quota_bytes=quota_bytes, char_width_bytes=char_width_bytes)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Storage file {self.path} must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write storage file {self.path}: {e}") from e
        logger.debug("Flushed %d keys to %s", len(self._data), self.path)

    def set(self, key: str, value: str) -> None:
        previous = self._data.get(key)
        super().set(key, value)
        try:
            self._flush()
        except StorageError:
            self._restore(key, previous)
            raise

    def remove(self, key: str) -> None:
        if key not in self._data:
            return
        previous = self._data[key]
        super().remove(key)
        try:
            self._flush()
        except StorageError:
            self._restore(key, previous)
            raise

    def _restore(self, key: str, previous: str | None) -> None:
        """Put key back to what the file still holds after a failed flush."""
        if previous is None:
            self._data.pop(key, None)
        else:
            self._data[key] = previous
