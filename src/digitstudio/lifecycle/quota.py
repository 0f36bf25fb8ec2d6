"""Storage usage estimation against an assumed capacity ceiling."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import topology_artifact_id

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class StorageSnapshot:
    used_bytes: int
    total_budget_bytes: int
    percentage_used: float
    artifact_count: int
    warn_ratio: float = 0.8

    @property
    def free_bytes(self) -> int:
        return max(self.total_budget_bytes - self.used_bytes, 0)

    @property
    def near_capacity(self) -> bool:
        return self.used_bytes > self.total_budget_bytes * self.warn_ratio

    @property
    def status(self) -> str:
        """Traffic-light status: critical above 90%, warning above 70%."""
        if self.percentage_used > 90:
            return "critical"
        if self.percentage_used > 70:
            return "warning"
        return "ok"


def format_size(num_bytes: int) -> str:
    """Human-readable size: '512 B', '12.3 KB', '4.5 MB'."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


class QuotaEstimator:
    """Estimates namespace usage by walking every key.

    The platform quota cannot be queried, so usage is approximated as
    (len(key) + len(value)) * char_width_bytes summed over all entries and
    compared against a fixed ceiling.
    """

    def __init__(
        self,
        storage: StoragePort,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        char_width_bytes: int = 2,
        warn_ratio: float = 0.8,
    ):
        self.storage = storage
        self.quota_bytes = quota_bytes
        self.char_width_bytes = char_width_bytes
        self.warn_ratio = warn_ratio

    def used_bytes(self) -> int:
        total_chars = 0
        for key, value in self.storage.items():
            total_chars += len(key) + len(value)
        return total_chars * self.char_width_bytes

    def analyze(self) -> StorageSnapshot:
        total_chars = 0
        artifact_count = 0
        for key, value in self.storage.items():
            total_chars += len(key) + len(value)
            if topology_artifact_id(key) is not None:
                artifact_count += 1
        used = total_chars * self.char_width_bytes
        snapshot = StorageSnapshot(
            used_bytes=used,
            total_budget_bytes=self.quota_bytes,
            percentage_used=used / self.quota_bytes * 100 if self.quota_bytes else 100.0,
            artifact_count=artifact_count,
            warn_ratio=self.warn_ratio,
        )
        logger.debug(
            "Storage: %s / %s (%.1f%%), %d artifact(s)",
            format_size(used),
            format_size(self.quota_bytes),
            snapshot.percentage_used,
            artifact_count,
        )
        return snapshot
