"""
Tests for storage usage estimation.
"""

import pytest

from digitstudio.artifacts.codec import ArtifactCodec
from digitstudio.lifecycle.quota import QuotaEstimator, StorageSnapshot, format_size
from digitstudio.ml.classifier import create_sequential_classifier
from digitstudio.storage import InMemoryStorage
from digitstudio.storage.keys import ACTIVE_MODEL_ID, INDEX_KEY


def test_used_bytes_sums_every_entry() -> None:
    storage = InMemoryStorage({"ab": "cde", "x": ""})
    assert QuotaEstimator(storage).used_bytes() == (5 + 1) * 2
    assert QuotaEstimator(storage, char_width_bytes=1).used_bytes() == 6


def test_used_bytes_tracks_writes_and_removes() -> None:
    """Usage never decreases on a write and never increases on a remove."""
    storage = InMemoryStorage()
    estimator = QuotaEstimator(storage)
    assert estimator.used_bytes() == 0

    storage.set("k", "v" * 100)
    after_first = estimator.used_bytes()
    assert after_first > 0

    storage.set("k2", "")
    after_second = estimator.used_bytes()
    assert after_second >= after_first

    storage.remove("k")
    assert estimator.used_bytes() <= after_second
    assert estimator.used_bytes() == storage.used_bytes()


def test_analyze_counts_artifacts_and_percentage() -> None:
    storage = InMemoryStorage()
    codec = ArtifactCodec(storage)
    model = create_sequential_classifier(hidden_units=4)
    codec.save(model, "m-1")
    codec.save(model, ACTIVE_MODEL_ID)
    storage.set(INDEX_KEY, "[]")

    snapshot = QuotaEstimator(storage, quota_bytes=1_000_000).analyze()
    assert snapshot.artifact_count == 2
    assert snapshot.used_bytes == storage.used_bytes()
    assert snapshot.total_budget_bytes == 1_000_000
    assert snapshot.percentage_used == pytest.approx(snapshot.used_bytes / 1_000_000 * 100)
    assert snapshot.free_bytes == 1_000_000 - snapshot.used_bytes


def test_near_capacity_is_strictly_above_warn_ratio() -> None:
    over = StorageSnapshot(used_bytes=81, total_budget_bytes=100, percentage_used=81.0, artifact_count=0)
    at = StorageSnapshot(used_bytes=80, total_budget_bytes=100, percentage_used=80.0, artifact_count=0)
    assert over.near_capacity
    assert not at.near_capacity


@pytest.mark.parametrize(
    "percentage,expected",
    [(95.0, "critical"), (75.0, "warning"), (10.0, "ok")],
)
def test_snapshot_status(percentage: float, expected: str) -> None:
    snapshot = StorageSnapshot(
        used_bytes=int(percentage),
        total_budget_bytes=100,
        percentage_used=percentage,
        artifact_count=0,
    )
    assert snapshot.status == expected


def test_format_size() -> None:
    assert format_size(512) == "512 B"
    assert format_size(2048) == "2.0 KB"
    assert format_size(5 * 1024 * 1024) == "5.0 MB"
