"""
Tests for the Studio operation boundary: outcomes and notifications.

Uses an in-memory namespace, a tiny hidden layer and a few synthetic drawings.
"""

from pathlib import Path

import numpy as np
import pytest

from digitstudio.config import EvictionSettings, StorageSettings, StudioConfig, TrainingSettings
from digitstudio.errors import StorageQuotaExceeded
from digitstudio.lifecycle.index import ModelRecord
from digitstudio.ml.classifier import CancelToken, create_sequential_classifier
from digitstudio.storage import InMemoryStorage
from digitstudio.storage.keys import (
    ACTIVE_MODEL_ID,
    DRAWINGS_KEY,
    HISTORY_KEY,
    INDEX_KEY,
    WEIGHT_SPECS,
    artifact_key,
)
from digitstudio.studio import Studio, build_storage


def _config(**storage) -> StudioConfig:
    return StudioConfig(
        storage=StorageSettings(backend="memory", **storage),
        eviction=EvictionSettings(),
        training=TrainingSettings(epochs=2, batch_size=4, hidden_units=4, seed=0),
    )


def _studio(quota_bytes: int | None = None) -> Studio:
    config = _config()
    return Studio(InMemoryStorage(quota_bytes=quota_bytes), config)


def _add_samples(studio: Studio, n: int = 10) -> None:
    for i in range(n):
        image = np.full((28, 28), 0.1 * (i % 2), dtype=np.float32)
        outcome = studio.add_sample(image, i % 2)
        assert outcome.ok


def _seed_active(studio: Studio) -> None:
    studio.codec.save(create_sequential_classifier(hidden_units=4), ACTIVE_MODEL_ID)


def test_build_storage_respects_backend(tmp_path: Path) -> None:
    memory = build_storage(_config())
    assert isinstance(memory, InMemoryStorage)
    file_config = StudioConfig(storage=StorageSettings(backend="file", path=str(tmp_path / "s.json")))
    file_storage = build_storage(file_config)
    assert file_storage.path == tmp_path / "s.json"


def test_train_saves_model_record_session_and_active() -> None:
    studio = _studio()
    _add_samples(studio)
    progress = []

    outcome = studio.train("  digits v1 ", on_progress=lambda e, t, m: progress.append((e, t)))

    assert outcome.ok, outcome.notification
    result = outcome.value
    assert not result.partial
    assert result.model_id.startswith("digit-classifier-digits-v1-")
    assert progress == [(1, 2), (2, 2)]
    assert len(result.epoch_metrics) == 2
    assert result.record.name == "digits v1"
    assert result.record.accuracy == pytest.approx(result.epoch_metrics[-1]["accuracy"] * 100)
    assert studio.index.ids() == [result.model_id]
    assert set(studio.codec.artifact_ids()) == {result.model_id, ACTIVE_MODEL_ID}
    sessions = studio.history.list()
    assert len(sessions) == 1
    assert sessions[0].model_id == result.model_id
    assert sessions[0].data_count == 10
    assert studio.history.epoch_metrics(result.model_id) == result.epoch_metrics
    assert outcome.notification.title == "Training complete"


def test_training_twice_with_same_name_records_both() -> None:
    studio = _studio()
    _add_samples(studio, 6)
    studio.train("same")
    studio.train("same")
    assert len(studio.index.list()) == 2
    assert len(studio.history.sessions_for("same")) == 2


def test_train_without_samples_fails_with_notification() -> None:
    outcome = _studio().train("empty")
    assert not outcome.ok
    assert outcome.notification.variant == "destructive"
    assert "samples" in outcome.notification.description


def test_train_cancelled_returns_warning() -> None:
    studio = _studio()
    _add_samples(studio, 4)
    token = CancelToken()
    token.cancel()

    outcome = studio.train("never", cancel=token)

    assert not outcome.ok
    assert outcome.notification.variant == "warning"
    assert studio.index.list() == []
    assert not studio.codec.exists(ACTIVE_MODEL_ID)


def test_train_falls_back_to_active_only_when_full_save_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    studio = _studio()
    _add_samples(studio, 4)

    def full_save_fails(*args, **kwargs):
        raise StorageQuotaExceeded("full")

    monkeypatch.setattr(studio, "_save_new_artifact", full_save_fails)
    outcome = studio.train("partial")

    assert outcome.ok
    assert outcome.value.partial
    assert outcome.notification.variant == "warning"
    assert studio.codec.exists(ACTIVE_MODEL_ID)
    assert studio.index.list() == []
    assert studio.history.list() == []


def test_save_active_uses_latest_accuracy_for_name() -> None:
    studio = _studio()
    _add_samples(studio, 6)
    trained = studio.train("alpha").value

    outcome = studio.save_active("alpha")

    assert outcome.ok
    record = outcome.value
    assert record.id != trained.model_id
    assert record.accuracy == pytest.approx(trained.session.final_accuracy * 100)
    assert studio.codec.exists(record.id)


def test_save_active_without_active_model() -> None:
    outcome = _studio().save_active("x")
    assert not outcome.ok
    assert outcome.notification.title == "Model not found"


def test_save_reports_quota_exceeded_as_storage_full() -> None:
    studio = _studio(quota_bytes=60_000)
    _seed_active(studio)

    outcome = studio.save_active("too big")

    assert not outcome.ok
    assert outcome.notification.title == "Storage full"
    assert outcome.notification.variant == "destructive"


def test_save_evicts_when_projection_crosses_threshold() -> None:
    config = StudioConfig(
        storage=StorageSettings(backend="memory"),
        eviction=EvictionSettings(safety_threshold_bytes=1, estimated_artifact_bytes=0),
        training=TrainingSettings(hidden_units=4),
    )
    studio = Studio(InMemoryStorage(), config)
    _seed_active(studio)
    first = studio.save_active("first").value

    outcome = studio.save_active("second")

    assert outcome.ok
    assert first.id in outcome.notification.description
    assert studio.index.ids() == [outcome.value.id]
    assert not studio.codec.exists(first.id)
    assert studio.codec.exists(ACTIVE_MODEL_ID)


def test_load_delete_duplicate_cycle() -> None:
    studio = _studio()
    _seed_active(studio)
    saved = studio.save_active("base").value

    duplicate = studio.duplicate_model(saved.id)
    assert duplicate.ok
    assert duplicate.value.name == "base (Copy)"
    assert set(studio.index.ids()) == {saved.id, duplicate.value.id}

    loaded = studio.load_model(duplicate.value.id)
    assert loaded.ok
    assert "base (Copy)" in loaded.notification.description

    deleted = studio.delete_model(saved.id)
    assert deleted.ok
    assert studio.index.ids() == [duplicate.value.id]
    assert not studio.codec.exists(saved.id)

    missing = studio.load_model(saved.id)
    assert not missing.ok


def test_predict_requires_active_model() -> None:
    studio = _studio()
    outcome = studio.predict(np.zeros(784))
    assert not outcome.ok
    assert outcome.notification.title == "No active model"

    _seed_active(studio)
    outcome = studio.predict(np.zeros(784))
    assert outcome.ok
    assert 0 <= outcome.value.digit <= 9
    assert len(outcome.value.probabilities) == 10
    assert outcome.value.confidence == pytest.approx(max(outcome.value.probabilities))


def test_import_export_round_trip(tmp_path: Path) -> None:
    studio = _studio()
    _seed_active(studio)
    saved = studio.save_active("to export").value

    exported = studio.export_model(saved.id, tmp_path)
    assert exported.ok
    files = [exported.value.descriptor, exported.value.weights]

    imported = studio.import_files(files, "back again")
    assert imported.ok
    assert imported.value.imported
    x = np.random.default_rng(0).random((2, 784), dtype=np.float32)
    original = studio.codec.load(saved.id).predict(x)
    assert np.allclose(studio.codec.load(imported.value.id).predict(x), original)
    assert np.allclose(studio.codec.load(ACTIVE_MODEL_ID).predict(x), original)


def test_import_without_descriptor_notifies(tmp_path: Path) -> None:
    studio = _studio()
    outcome = studio.import_model(None, tmp_path / "w.weights.bin", "x")
    assert not outcome.ok
    assert outcome.notification.title == "Descriptor file missing"
    assert studio.storage.keys() == []


def test_list_models_with_validation_flags_drift() -> None:
    studio = _studio()
    _seed_active(studio)
    studio.codec.save(create_sequential_classifier(hidden_units=4), "stray-123")
    studio.index.add(ModelRecord(id="ghost-1", name="ghost"))

    outcome = studio.list_models(validate=True)

    assert outcome.ok
    assert [r.id for r in outcome.value] == ["ghost-1"]
    assert outcome.notification.variant == "warning"

    repaired = studio.repair()
    assert repaired.ok
    assert set(studio.index.ids()) == {ACTIVE_MODEL_ID, "stray-123"}
    assert not studio.diagnose().value.has_drift


def test_unreadable_index_is_reported() -> None:
    studio = _studio()
    studio.storage.set(INDEX_KEY, "{broken")
    outcome = studio.list_models()
    assert not outcome.ok
    assert outcome.notification.title == "Model list unreadable"


def test_storage_status_warns_near_capacity() -> None:
    studio = Studio(InMemoryStorage(), _config(quota_bytes=100))
    studio.storage.set("filler", "x" * 45)
    outcome = studio.storage_status()
    assert outcome.ok
    assert outcome.value.used_bytes == (len("filler") + 45) * 2
    assert outcome.notification.variant == "warning"

    quiet = Studio(InMemoryStorage(), _config()).storage_status()
    assert quiet.notification is None


def test_free_space_and_clear_all_models() -> None:
    studio = _studio()
    _seed_active(studio)
    a = studio.save_active("a").value
    b = studio.save_active("b").value

    freed = studio.free_space()
    assert freed.value == a.id
    assert studio.index.ids() == [b.id]

    cleared = studio.clear_all_models()
    assert cleared.ok
    assert studio.codec.artifact_ids() == [ACTIVE_MODEL_ID]
    assert studio.index.list() == []

    nothing = studio.free_space()
    assert nothing.ok
    assert nothing.value is None


def test_reset_erases_everything() -> None:
    studio = _studio()
    _add_samples(studio, 4)
    studio.train("gone")

    outcome = studio.reset()

    assert outcome.ok
    for key in (INDEX_KEY, HISTORY_KEY, DRAWINGS_KEY):
        assert key not in studio.storage
    assert studio.storage.keys() == []


def test_compare_ranks_models_and_tests_on_drawings() -> None:
    studio = _studio()
    _add_samples(studio, 6)
    first = studio.train("one").value
    second = studio.train("two").value

    outcome = studio.compare([first.model_id, second.model_id, "unknown"], test=True)

    assert outcome.ok
    metrics, scores = outcome.value
    assert [m.model_id for m in metrics] == [first.model_id, second.model_id, "unknown"]
    assert metrics[0].test_accuracy is not None
    assert metrics[2].test_accuracy is None
    assert len(scores) == 3
    assert scores[0].overall_score >= scores[-1].overall_score


def test_training_history_filter() -> None:
    studio = _studio()
    _add_samples(studio, 4)
    studio.train("h1")
    studio.train("h2")
    assert [s.model_name for s in studio.training_history().value] == ["h1", "h2"]
    assert [s.model_name for s in studio.training_history("h2").value] == ["h2"]


def test_invalid_sample_is_reported() -> None:
    outcome = _studio().add_sample(np.zeros(10), 3)
    assert not outcome.ok
    assert outcome.notification.variant == "destructive"


@pytest.mark.parametrize("specs", ["[1, 2, 3, 4]", '["a", "b"]'])
def test_corrupt_weight_specs_are_reported_not_raised(specs: str) -> None:
    studio = _studio()
    studio.codec.save(create_sequential_classifier(hidden_units=4), "m-1")
    studio.storage.set(artifact_key("m-1", WEIGHT_SPECS), specs)

    outcome = studio.load_model("m-1")

    assert not outcome.ok
    assert outcome.notification.title == "Invalid model"


def test_malformed_stored_drawings_are_reported() -> None:
    studio = _studio()
    studio.storage.set(DRAWINGS_KEY, '[{"foo": 1}]')

    added = studio.add_sample(np.zeros(784), 3)
    trained = studio.train("x")

    assert not added.ok
    assert not trained.ok
    assert added.notification.variant == "destructive"


def test_predict_scalar_input_is_reported() -> None:
    studio = _studio()
    _seed_active(studio)
    outcome = studio.predict(None)
    assert not outcome.ok
    assert outcome.notification.variant == "destructive"
