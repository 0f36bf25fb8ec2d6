"""
Persistent key-value namespace used by every lifecycle component.

Components receive a StoragePort instead of touching a global store, so the
core runs the same against InMemoryStorage in tests and JsonFileStorage from
the CLI.
"""

from digitstudio.storage.base import StoragePort
from digitstudio.storage.file_store import JsonFileStorage
from digitstudio.storage.memory import InMemoryStorage

__all__ = ["StoragePort", "InMemoryStorage", "JsonFileStorage"]
