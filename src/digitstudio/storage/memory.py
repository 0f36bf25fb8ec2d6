"""In-memory storage backend with an optional byte quota."""

from __future__ import annotations

from digitstudio.errors import StorageQuotaExceeded
from digitstudio.storage.base import StoragePort


def estimate_entry_bytes(key: str, value: str, char_width_bytes: int = 2) -> int:
    """Approximate footprint of one entry, counting every character at a fixed width."""
    return (len(key) + len(value)) * char_width_bytes


class InMemoryStorage(StoragePort):
    """Dict-backed namespace that keeps insertion order.

    When quota_bytes is set, a write that would push the estimated usage past
    the quota raises StorageQuotaExceeded and leaves the namespace untouched,
    the same way a browser-style quota rejects a setItem call.
    """

    def __init__(
        self,
        initial: dict[str, str] | None = None,
        quota_bytes: int | None = None,
        char_width_bytes: int = 2,
    ):
        self._data: dict[str, str] = dict(initial or {})
        self.quota_bytes = quota_bytes
        self.char_width_bytes = char_width_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            projected = self.used_bytes() + estimate_entry_bytes(key, value, self.char_width_bytes)
            if key in self._data:
                projected -= estimate_entry_bytes(key, self._data[key], self.char_width_bytes)
            if projected > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Writing '{key}' would use {projected} bytes (quota {self.quota_bytes})"
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def used_bytes(self) -> int:
        return sum(
            estimate_entry_bytes(k, v, self.char_width_bytes) for k, v in self._data.items()
        )

    def snapshot(self) -> dict[str, str]:
        """Return a shallow copy of the namespace (handy in tests)."""
        return dict(self._data)
