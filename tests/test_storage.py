"""
Tests for the storage backends and the key layout helpers.
"""

import json
from pathlib import Path

import pytest

from digitstudio.errors import StorageError, StorageQuotaExceeded
from digitstudio.storage import InMemoryStorage, JsonFileStorage
from digitstudio.storage.keys import (
    ACTIVE_MODEL_ID,
    INFO,
    TOPOLOGY,
    artifact_key,
    artifact_keys,
    discover_artifact_ids,
    metrics_key,
    parse_artifact_key,
    topology_artifact_id,
)
from digitstudio.storage.memory import estimate_entry_bytes


def test_estimate_entry_bytes_counts_key_and_value() -> None:
    assert estimate_entry_bytes("ab", "cde") == 10
    assert estimate_entry_bytes("ab", "cde", char_width_bytes=1) == 5


def test_memory_storage_keeps_insertion_order() -> None:
    storage = InMemoryStorage()
    for key in ("c", "a", "b"):
        storage.set(key, key.upper())
    assert storage.keys() == ["c", "a", "b"]
    assert storage.items() == [("c", "C"), ("a", "A"), ("b", "B")]
    assert "a" in storage
    assert "z" not in storage


def test_remove_missing_key_is_noop() -> None:
    storage = InMemoryStorage({"k": "v"})
    storage.remove("missing")
    assert storage.snapshot() == {"k": "v"}


def test_quota_rejects_write_and_leaves_namespace_untouched() -> None:
    storage = InMemoryStorage(quota_bytes=20)
    storage.set("a", "bcd")  # 8 bytes
    with pytest.raises(StorageQuotaExceeded):
        storage.set("b", "x" * 10)  # +22 bytes
    assert storage.snapshot() == {"a": "bcd"}
    assert storage.used_bytes() == 8


def test_quota_counts_overwrite_as_replacement() -> None:
    storage = InMemoryStorage(quota_bytes=20)
    storage.set("a", "x" * 9)  # exactly 20 bytes
    storage.set("a", "y" * 9)
    assert storage.get("a") == "y" * 9


def test_file_storage_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "store" / "storage.json"
    storage = JsonFileStorage(path)
    storage.set("k", "v")
    storage.set("k2", "v2")
    storage.remove("k")

    reopened = JsonFileStorage(path)
    assert reopened.snapshot() == {"k2": "v2"}
    assert json.loads(path.read_text(encoding="utf-8")) == {"k2": "v2"}
    assert not path.with_suffix(".json.tmp").exists()


def test_file_storage_missing_file_starts_empty(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "nope.json")
    assert storage.keys() == []
    assert not (tmp_path / "nope.json").exists()


@pytest.mark.parametrize("content", ["not json", "[1, 2, 3]"])
def test_file_storage_rejects_corrupt_file(tmp_path: Path, content: str) -> None:
    path = tmp_path / "storage.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(StorageError):
        JsonFileStorage(path)


def test_file_storage_quota_failure_does_not_write(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    storage = JsonFileStorage(path, quota_bytes=10)
    storage.set("a", "b")
    with pytest.raises(StorageQuotaExceeded):
        storage.set("c", "x" * 10)
    assert JsonFileStorage(path).snapshot() == {"a": "b"}


def test_artifact_key_layout() -> None:
    assert artifact_key("m1", TOPOLOGY) == "torch_models/m1/model_topology"
    assert artifact_keys("m1") == [
        "torch_models/m1/model_topology",
        "torch_models/m1/weight_specs",
        "torch_models/m1/weight_data",
        "torch_models/m1/info",
    ]
    assert metrics_key("m1") == "metrics-m1"


def test_parse_artifact_key() -> None:
    assert parse_artifact_key("torch_models/m1/info") == ("m1", INFO)
    assert parse_artifact_key("saved-models") is None
    assert parse_artifact_key("torch_models//info") is None
    assert parse_artifact_key("torch_models/a/b/c") is None
    assert topology_artifact_id(artifact_key(ACTIVE_MODEL_ID, TOPOLOGY)) == ACTIVE_MODEL_ID
    assert topology_artifact_id(artifact_key("m1", INFO)) is None


def test_discover_artifact_ids_uses_topology_keys_in_order() -> None:
    keys = [
        artifact_key("b", TOPOLOGY),
        artifact_key("a", INFO),
        "saved-models",
        artifact_key("a", TOPOLOGY),
        artifact_key("b", TOPOLOGY),
        artifact_key("c", INFO),
    ]
    assert discover_artifact_ids(keys) == ["b", "a"]


def test_file_storage_failed_flush_keeps_memory_in_sync(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "storage.json"
    storage = JsonFileStorage(path)
    storage.set("a", "old")

    def replace_fails(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("digitstudio.storage.file_store.os.replace", replace_fails)
    with pytest.raises(StorageError):
        storage.set("a", "new")
    with pytest.raises(StorageError):
        storage.set("b", "added")
    with pytest.raises(StorageError):
        storage.remove("a")

    assert storage.snapshot() == {"a": "old"}
    assert JsonFileStorage(path).snapshot() == {"a": "old"}
