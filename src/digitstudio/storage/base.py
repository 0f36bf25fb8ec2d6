"""Base interface for the persistent key-value namespace."""

from __future__ import annotations


class StoragePort:
    """String-to-string namespace shared by artifacts, index, history and drawings.

    Implementations must enumerate keys in a stable order (insertion order for
    the bundled backends); eviction and repair depend on it.
    """

    def get(self, key: str) -> str | None:
        """Return the value stored under key, or None if absent."""
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        """Store value under key.

        Raises:
            StorageQuotaExceeded: The write would exceed the backend quota
            StorageError: The backend could not persist the value
        """
        raise NotImplementedError

    def remove(self, key: str) -> None:
        """Remove key. Removing a missing key is a no-op."""
        raise NotImplementedError

    def keys(self) -> list[str]:
        """Return every key currently stored, in enumeration order."""
        raise NotImplementedError

    def items(self) -> list[tuple[str, str]]:
        out = []
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                out.append((key, value))
        return out

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
