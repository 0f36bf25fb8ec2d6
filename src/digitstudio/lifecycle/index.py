"""
Metadata index: the list of saved models shown to the user.

The index is one JSON array under the "saved-models" key. It is denormalized
from the artifacts themselves and can drift from them (see audit.py); every
mutation is a full read-modify-write performed under a single lock.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator

from digitstudio.errors import IndexCorrupt
from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import INDEX_KEY
from digitstudio.validation import INDEX_SCHEMA, schema_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRecord:
    """One entry of the index.

    Attributes:
        id: Artifact id (also the storage key of the artifact)
        name: User-facing label, not unique
        size: Rough size estimate for display (e.g. "~400KB")
        last_modified: Display timestamp set when the record was written
        accuracy: Final accuracy in percent, if known
        imported: True when the model came from outside (no local training history)
    """

    id: str
    name: str
    size: str = "~400KB"
    last_modified: str = ""
    accuracy: float | None = None
    imported: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "lastModified": self.last_modified,
        }
        if self.accuracy is not None:
            out["accuracy"] = self.accuracy
        if self.imported:
            out["imported"] = True
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelRecord":
        accuracy = data.get("accuracy")
        return cls(
            id=data["id"],
            name=data["name"],
            size=data.get("size", ""),
            last_modified=data.get("lastModified", ""),
            accuracy=float(accuracy) if accuracy is not None else None,
            imported=bool(data.get("imported", False)),
        )

    def renamed(self, new_id: str, new_name: str, **changes: Any) -> "ModelRecord":
        """Copy of this record under a new id/name; the original is left untouched."""
        return replace(self, id=new_id, name=new_name, **changes)


class MetadataIndex:
    """Read-modify-write access to the persisted index.

    All mutations go through mutate(), which holds an RLock for the whole
    read -> change -> write cycle. Callers that need several index operations
    to appear atomic (e.g. the save saga) can hold `lock` themselves.
    """

    def __init__(self, storage: StoragePort):
        self.storage = storage
        self.lock = threading.RLock()

    def _read(self) -> list[ModelRecord]:
        raw = self.storage.get(INDEX_KEY)
        if raw is None or raw == "":
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IndexCorrupt(f"Model index is not valid JSON: {e}") from e
        errors = schema_errors(data, INDEX_SCHEMA)
        if errors:
            raise IndexCorrupt(f"Model index failed validation: {'; '.join(errors[:3])}")
        return [ModelRecord.from_dict(item) for item in data]

    def _write(self, records: list[ModelRecord]) -> None:
        self.storage.set(INDEX_KEY, json.dumps([r.to_dict() for r in records]))

    @contextmanager
    def mutate(self) -> Iterator[list[ModelRecord]]:
        """Yield the current records as a list; whatever it holds on exit is written back."""
        with self.lock:
            records = self._read()
            yield records
            self._write(records)

    # --- Queries ----------------------------------------------------------------

    def list(self) -> list[ModelRecord]:
        with self.lock:
            return self._read()

    def ids(self) -> list[str]:
        return [r.id for r in self.list()]

    def get(self, record_id: str) -> ModelRecord | None:
        for record in self.list():
            if record.id == record_id:
                return record
        return None

    def find_by_name(self, name: str) -> ModelRecord | None:
        for record in self.list():
            if record.name == name:
                return record
        return None

    # --- Mutations --------------------------------------------------------------

    def add(self, record: ModelRecord) -> None:
        """Append record. Duplicate ids are the caller's responsibility."""
        with self.mutate() as records:
            records.append(record)
        logger.info("Indexed model '%s' (%s)", record.name, record.id)

    def remove(self, record_id: str) -> int:
        """Drop every record with record_id; returns how many were removed."""
        with self.lock:
            records = self._read()
            kept = [r for r in records if r.id != record_id]
            removed = len(records) - len(kept)
            if not removed:
                return 0
            self._write(kept)
        logger.info("Removed %d index record(s) for '%s'", removed, record_id)
        return removed

    def keep_only(self, predicate: Callable[[ModelRecord], bool]) -> list[ModelRecord]:
        """Drop records failing predicate; returns the dropped records."""
        with self.mutate() as records:
            dropped = [r for r in records if not predicate(r)]
            records[:] = [r for r in records if predicate(r)]
        return dropped

    def replace_all(self, new_records: list[ModelRecord]) -> None:
        """Overwrite the index without reading it first (works on a corrupt index)."""
        with self.lock:
            self._write(list(new_records))

    def clear(self) -> None:
        with self.lock:
            self.storage.remove(INDEX_KEY)
