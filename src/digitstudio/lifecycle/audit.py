"""
Consistency audit between the metadata index and stored artifacts.

Storage writes and index writes are independent operations, so the index can
list models that no longer exist (dangling records) or miss models that do
(orphaned artifacts). diagnose() reports the divergence without touching
anything; repair() rewrites the index from what is actually in storage.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any

from digitstudio.errors import IndexCorrupt, IndexDrift
from digitstudio.lifecycle.index import MetadataIndex, ModelRecord
from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import (
    DRAWINGS_KEY,
    HISTORY_KEY,
    SUB_KEYS,
    discover_artifact_ids,
    parse_artifact_key,
)
from digitstudio.utils.ids import display_name_from_id, display_timestamp

logger = logging.getLogger(__name__)

REPAIR_STRATEGIES = ("rebuild", "merge")
RECOVERED_SIZE = "~50KB"


@dataclass(frozen=True)
class DiagnosticReport:
    """Snapshot of index vs storage. Two calls with no mutation in between compare equal."""

    index_ids: tuple[str, ...]
    storage_ids: tuple[str, ...]
    orphaned_artifacts: tuple[str, ...]
    dangling_records: tuple[str, ...]
    duplicate_ids: tuple[str, ...]
    incomplete_artifacts: tuple[str, ...]
    artifact_keys: tuple[str, ...]
    index_readable: bool
    index_error: str | None
    history_count: int | None
    drawings_count: int | None

    @property
    def has_drift(self) -> bool:
        return bool(
            self.orphaned_artifacts
            or self.dangling_records
            or self.duplicate_ids
            or not self.index_readable
        )

    def raise_for_drift(self) -> None:
        if self.has_drift:
            raise IndexDrift(list(self.orphaned_artifacts), list(self.dangling_records))

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["has_drift"] = self.has_drift
        return out


@dataclass(frozen=True)
class RepairReport:
    strategy: str
    before_ids: tuple[str, ...]
    after_ids: tuple[str, ...]
    recovered: tuple[str, ...]
    preserved: tuple[str, ...]
    dropped: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _json_array_length(raw: str | None) -> int | None:
    if raw is None:
        return 0
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return len(data) if isinstance(data, list) else None


def recovered_record(artifact_id: str) -> ModelRecord:
    """Index entry for an artifact whose provenance is unknown."""
    return ModelRecord(
        id=artifact_id,
        name=display_name_from_id(artifact_id),
        size=RECOVERED_SIZE,
        last_modified=display_timestamp(),
        imported=True,
    )


class ConsistencyAuditor:
    def __init__(self, storage: StoragePort, index: MetadataIndex):
        self.storage = storage
        self.index = index

    def _scan(self) -> tuple[list[str], list[str], list[str]]:
        """Return (artifact keys, ids with a topology, ids with a partial sub-key set)."""
        keys = self.storage.keys()
        artifact_keys = []
        parts: dict[str, set[str]] = {}
        for key in keys:
            parsed = parse_artifact_key(key)
            if parsed is None:
                continue
            artifact_keys.append(key)
            parts.setdefault(parsed[0], set()).add(parsed[1])
        storage_ids = discover_artifact_ids(keys)
        incomplete = [aid for aid, subs in parts.items() if not set(SUB_KEYS) <= subs]
        return artifact_keys, storage_ids, incomplete

    def diagnose(self) -> DiagnosticReport:
        artifact_keys, storage_ids, incomplete = self._scan()
        index_error = None
        try:
            index_ids = self.index.ids()
        except IndexCorrupt as e:
            index_ids = []
            index_error = str(e)

        index_set = set(index_ids)
        storage_set = set(storage_ids)
        report = DiagnosticReport(
            index_ids=tuple(index_ids),
            storage_ids=tuple(storage_ids),
            orphaned_artifacts=tuple(i for i in storage_ids if i not in index_set),
            dangling_records=tuple(dict.fromkeys(i for i in index_ids if i not in storage_set)),
            duplicate_ids=tuple(sorted(i for i, n in Counter(index_ids).items() if n > 1)),
            incomplete_artifacts=tuple(incomplete),
            artifact_keys=tuple(artifact_keys),
            index_readable=index_error is None,
            index_error=index_error,
            history_count=_json_array_length(self.storage.get(HISTORY_KEY)),
            drawings_count=_json_array_length(self.storage.get(DRAWINGS_KEY)),
        )
        if report.has_drift:
            logger.warning(
                "Index drift: %d orphaned artifact(s), %d dangling record(s), %d duplicate id(s)%s",
                len(report.orphaned_artifacts),
                len(report.dangling_records),
                len(report.duplicate_ids),
                "" if report.index_readable else ", index unreadable",
            )
        return report

    def repair(self, strategy: str = "rebuild") -> RepairReport:
        """Rewrite the index so its id set equals the ids present in storage.

        "rebuild" discards every existing record and synthesizes one per stored
        artifact (name derived from the id, imported=True): original names and
        accuracies are lost. "merge" keeps existing records for ids that are in
        both places and synthesizes only the missing ones.
        """
        if strategy not in REPAIR_STRATEGIES:
            raise ValueError(f"Unknown repair strategy: {strategy!r}. Use one of {REPAIR_STRATEGIES}")

        with self.index.lock:
            _, storage_ids, _ = self._scan()
            try:
                existing = self.index.list()
            except IndexCorrupt as e:
                logger.warning("Discarding unreadable index: %s", e)
                existing = []
            before_ids = [r.id for r in existing]

            known: dict[str, ModelRecord] = {}
            if strategy == "merge":
                for record in existing:
                    known.setdefault(record.id, record)

            rebuilt = []
            recovered = []
            preserved = []
            for artifact_id in storage_ids:
                if artifact_id in known:
                    rebuilt.append(known[artifact_id])
                    preserved.append(artifact_id)
                else:
                    rebuilt.append(recovered_record(artifact_id))
                    recovered.append(artifact_id)
            self.index.replace_all(rebuilt)

        storage_set = set(storage_ids)
        report = RepairReport(
            strategy=strategy,
            before_ids=tuple(before_ids),
            after_ids=tuple(storage_ids),
            recovered=tuple(recovered),
            preserved=tuple(preserved),
            dropped=tuple(dict.fromkeys(i for i in before_ids if i not in storage_set)),
        )
        logger.info(
            "Repaired index (%s): %d model(s), %d recovered, %d dropped",
            strategy,
            len(storage_ids),
            len(recovered),
            len(report.dropped),
        )
        return report
