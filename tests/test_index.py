"""
Tests for the metadata index.
"""

import json
import threading

import pytest

from digitstudio.errors import IndexCorrupt
from digitstudio.lifecycle.index import MetadataIndex, ModelRecord
from digitstudio.storage import InMemoryStorage
from digitstudio.storage.keys import INDEX_KEY


def test_empty_index_lists_nothing() -> None:
    index = MetadataIndex(InMemoryStorage())
    assert index.list() == []
    assert index.get("anything") is None


def test_records_persist_with_camel_case_fields() -> None:
    storage = InMemoryStorage()
    index = MetadataIndex(storage)
    index.add(ModelRecord(id="m-1", name="my model", last_modified="01/01/2026 10:00:00"))
    index.add(ModelRecord(id="m-2", name="other", accuracy=91.5, imported=True))

    raw = json.loads(storage.get(INDEX_KEY))
    assert raw[0] == {"id": "m-1", "name": "my model", "size": "~400KB", "lastModified": "01/01/2026 10:00:00"}
    assert raw[1]["accuracy"] == 91.5
    assert raw[1]["imported"] is True

    reloaded = MetadataIndex(storage).list()
    assert reloaded[1] == ModelRecord(id="m-2", name="other", accuracy=91.5, imported=True)


def test_remove_drops_every_record_with_the_id() -> None:
    index = MetadataIndex(InMemoryStorage())
    index.add(ModelRecord(id="dup", name="a"))
    index.add(ModelRecord(id="keep", name="b"))
    index.add(ModelRecord(id="dup", name="c"))

    assert index.remove("dup") == 2
    assert index.ids() == ["keep"]
    assert index.remove("dup") == 0


@pytest.mark.parametrize("raw", ["{not json", '[{"name": "no id"}]', '{"id": "x"}', '[{"id": "", "name": "x"}]'])
def test_corrupt_index_raises(raw: str) -> None:
    storage = InMemoryStorage({INDEX_KEY: raw})
    with pytest.raises(IndexCorrupt):
        MetadataIndex(storage).list()


def test_replace_all_overwrites_corrupt_index() -> None:
    storage = InMemoryStorage({INDEX_KEY: "{not json"})
    index = MetadataIndex(storage)
    index.replace_all([ModelRecord(id="a", name="a")])
    assert index.ids() == ["a"]


def test_keep_only_returns_dropped_records() -> None:
    index = MetadataIndex(InMemoryStorage())
    for i in range(4):
        index.add(ModelRecord(id=f"m-{i}", name=f"n{i}"))

    dropped = index.keep_only(lambda r: r.id in {"m-1", "m-3"})

    assert [r.id for r in dropped] == ["m-0", "m-2"]
    assert index.ids() == ["m-1", "m-3"]


def test_find_by_name_returns_first_match() -> None:
    index = MetadataIndex(InMemoryStorage())
    index.add(ModelRecord(id="m-1", name="same"))
    index.add(ModelRecord(id="m-2", name="same"))
    assert index.find_by_name("same").id == "m-1"
    assert index.find_by_name("missing") is None


def test_renamed_leaves_original_untouched() -> None:
    original = ModelRecord(id="m-1", name="a", accuracy=90.0)
    copy = original.renamed("m-2", "a (Copy)", last_modified="now")
    assert copy.id == "m-2"
    assert copy.name == "a (Copy)"
    assert copy.accuracy == 90.0
    assert original.id == "m-1"
    assert original.last_modified == ""


def test_clear_removes_the_key() -> None:
    storage = InMemoryStorage()
    index = MetadataIndex(storage)
    index.add(ModelRecord(id="m-1", name="a"))
    index.clear()
    assert INDEX_KEY not in storage


def test_concurrent_adds_are_not_lost() -> None:
    """Read-modify-write cycles from several threads keep every record."""
    index = MetadataIndex(InMemoryStorage())
    threads_count, per_thread = 8, 25

    def worker(t: int) -> None:
        for i in range(per_thread):
            index.add(ModelRecord(id=f"t{t}-{i}", name=f"t{t}"))

    threads = [threading.Thread(target=worker, args=(t,)) for t in range(threads_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ids = index.ids()
    assert len(ids) == threads_count * per_thread
    assert len(set(ids)) == threads_count * per_thread


def test_remove_from_missing_index_writes_nothing() -> None:
    storage = InMemoryStorage()
    index = MetadataIndex(storage)
    assert index.remove("ghost") == 0
    assert INDEX_KEY not in storage
