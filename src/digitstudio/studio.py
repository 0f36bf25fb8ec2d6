"""
Operation boundary for the model studio.

Every public method of Studio runs one user action end to end and returns an
Outcome: the result value on success, and a Notification the caller can show
either way. Storage and codec errors never escape these methods.

Saving a model is a saga with no transaction behind it:

    reserve (estimate size) -> evict if needed -> write artifact -> commit index

If a step fails midway the namespace is left as is; `repair` brings the index
back in line with storage afterwards.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from digitstudio.artifacts.codec import ArtifactCodec, ExportedFiles
from digitstudio.config import StudioConfig
from digitstudio.errors import (
    ArtifactCorrupt,
    ArtifactNotFound,
    IndexCorrupt,
    MissingDescriptor,
    StorageQuotaExceeded,
    StudioError,
    TrainingCancelled,
)
from digitstudio.lifecycle import comparison
from digitstudio.lifecycle.audit import ConsistencyAuditor, DiagnosticReport, RepairReport
from digitstudio.lifecycle.eviction import EvictionOutcome, EvictionPolicy
from digitstudio.lifecycle.gateway import ImportExportGateway
from digitstudio.lifecycle.history import TrainingHistory, TrainingSession
from digitstudio.lifecycle.index import MetadataIndex, ModelRecord
from digitstudio.lifecycle.quota import QuotaEstimator, StorageSnapshot, format_size
from digitstudio.ml.classifier import CancelToken, DigitClassifier, create_sequential_classifier
from digitstudio.ml.data import DrawingStore, TrainingSample
from digitstudio.storage.base import StoragePort
from digitstudio.storage.file_store import JsonFileStorage
from digitstudio.storage.keys import (
    DRAWINGS_KEY,
    HISTORY_KEY,
    INDEX_KEY,
    METRICS_KEY_PREFIX,
    is_artifact_key,
    parse_artifact_key,
)
from digitstudio.storage.memory import InMemoryStorage
from digitstudio.utils.ids import display_timestamp, make_model_id

logger = logging.getLogger(__name__)

SAVED_SIZE = "~400KB"
COPY_SUFFIX = " (Copy)"

ProgressCallback = Callable[[int, int, dict[str, Any]], None]


@dataclass
class Notification:
    title: str
    description: str
    variant: str = "default"  # "default" | "warning" | "destructive"


@dataclass
class Outcome:
    ok: bool
    value: Any = None
    notification: Notification | None = None


@dataclass
class TrainingResult:
    model_id: str | None
    record: ModelRecord | None
    session: TrainingSession | None
    epoch_metrics: list[dict[str, Any]]
    eviction: EvictionOutcome | None
    partial: bool = False


@dataclass
class Prediction:
    digit: int
    confidence: float
    probabilities: list[float] = field(default_factory=list)


def build_storage(config: StudioConfig) -> StoragePort:
    settings = config.storage
    if settings.backend == "memory":
        return InMemoryStorage(quota_bytes=settings.quota_bytes, char_width_bytes=settings.char_width_bytes)
    return JsonFileStorage(
        settings.path,
        quota_bytes=settings.quota_bytes,
        char_width_bytes=settings.char_width_bytes,
    )


def _error_notification(action: str, error: Exception) -> Notification:
    if isinstance(error, StorageQuotaExceeded):
        return Notification(
            "Storage full",
            f"{action} failed: not enough storage space. Delete or export old models and try again.",
            "destructive",
        )
    if isinstance(error, ArtifactNotFound):
        return Notification("Model not found", f"{action}: {error}")
    if isinstance(error, MissingDescriptor):
        return Notification("Descriptor file missing", f"{action}: {error}", "destructive")
    if isinstance(error, ArtifactCorrupt):
        return Notification("Invalid model", f"{action}: {error}", "destructive")
    if isinstance(error, IndexCorrupt):
        return Notification(
            "Model list unreadable",
            f"{action}: {error}. Run repair to rebuild the list from storage.",
            "destructive",
        )
    if isinstance(error, TrainingCancelled):
        return Notification("Training cancelled", f"{action} was cancelled before completion.", "warning")
    if isinstance(error, ValueError):
        return Notification("Invalid input", f"{action}: {error}", "destructive")
    return Notification("Error", f"{action} failed: {error}", "destructive")


class Studio:
    """Facade over the lifecycle components, sharing one storage namespace."""

    def __init__(self, storage: StoragePort, config: StudioConfig | None = None):
        self.config = config or StudioConfig.default()
        self.storage = storage
        self.active_id = self.config.eviction.protected_id

        self.codec = ArtifactCodec(storage)
        self.index = MetadataIndex(storage)
        self.estimator = QuotaEstimator(
            storage,
            quota_bytes=self.config.storage.quota_bytes,
            char_width_bytes=self.config.storage.char_width_bytes,
            warn_ratio=self.config.storage.warn_ratio,
        )
        self.eviction = EvictionPolicy(
            self.codec,
            self.index,
            self.estimator,
            safety_threshold_bytes=self.config.eviction.safety_threshold_bytes,
            protected_id=self.active_id,
        )
        self.auditor = ConsistencyAuditor(storage, self.index)
        self.gateway = ImportExportGateway(self.codec, self.index, active_id=self.active_id)
        self.history = TrainingHistory(storage)
        self.drawings = DrawingStore(storage)
        self._save_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: StudioConfig) -> "Studio":
        return cls(build_storage(config), config)

    # --- Internals --------------------------------------------------------------

    def _run(self, action: str, fn: Callable[[], Outcome]) -> Outcome:
        try:
            return fn()
        except (StudioError, OSError, ValueError) as e:
            logger.error("%s failed: %s", action, e)
            return Outcome(ok=False, notification=_error_notification(action, e))

    def _save_new_artifact(
        self,
        model: DigitClassifier,
        record: ModelRecord,
        also_active: bool = False,
    ) -> EvictionOutcome:
        """Save saga for a brand-new artifact id. Serialized across threads."""
        with self._save_lock:
            eviction = self.eviction.ensure_capacity(
                self.config.eviction.estimated_artifact_bytes,
                exclude={record.id},
            )
            self.codec.save(model, record.id)
            if also_active:
                self.codec.save(model, self.active_id)
            self.index.add(record)
        return eviction

    @staticmethod
    def _eviction_note(eviction: EvictionOutcome | None) -> str:
        if eviction is None or eviction.evicted_id is None:
            return ""
        return f" Model '{eviction.evicted_id}' was removed to free space."

    # --- Storage ----------------------------------------------------------------

    def storage_status(self) -> Outcome:
        def _do() -> Outcome:
            snapshot: StorageSnapshot = self.estimator.analyze()
            note = None
            if snapshot.near_capacity:
                note = Notification(
                    "Storage almost full",
                    f"{snapshot.percentage_used:.0f}% of ~{format_size(snapshot.total_budget_bytes)} used. "
                    "Consider deleting old models.",
                    "warning",
                )
            return Outcome(ok=True, value=snapshot, notification=note)

        return self._run("Storage analysis", _do)

    def free_space(self) -> Outcome:
        def _do() -> Outcome:
            with self._save_lock:
                victim = self.eviction.evict_one()
            if victim is None:
                return Outcome(
                    ok=True,
                    notification=Notification("No model to delete", "There are no saved models to remove."),
                )
            return Outcome(
                ok=True,
                value=victim,
                notification=Notification("Model deleted", f"Model '{victim}' was removed to free space."),
            )

        return self._run("Free space", _do)

    # --- Model list -------------------------------------------------------------

    def list_models(self, validate: bool = False) -> Outcome:
        def _do() -> Outcome:
            note = None
            if validate:
                report = self.auditor.diagnose()
                if report.has_drift:
                    note = Notification(
                        "Model list out of sync",
                        f"{len(report.orphaned_artifacts)} stored model(s) missing from the list, "
                        f"{len(report.dangling_records)} listed model(s) missing from storage. "
                        "Run repair to rebuild the list (names and accuracies of unlisted models are lost).",
                        "warning",
                    )
                if not report.index_readable:
                    return Outcome(ok=False, value=[], notification=note)
            return Outcome(ok=True, value=self.index.list(), notification=note)

        return self._run("Loading model list", _do)

    def diagnose(self) -> Outcome:
        def _do() -> Outcome:
            report: DiagnosticReport = self.auditor.diagnose()
            if report.has_drift:
                note = Notification(
                    "Drift detected",
                    f"Orphaned: {list(report.orphaned_artifacts)}; dangling: {list(report.dangling_records)}.",
                    "warning",
                )
            else:
                note = Notification("Diagnosis complete", f"{len(report.storage_ids)} model(s), index consistent.")
            return Outcome(ok=True, value=report, notification=note)

        return self._run("Diagnosis", _do)

    def repair(self, strategy: str = "rebuild") -> Outcome:
        def _do() -> Outcome:
            report: RepairReport = self.auditor.repair(strategy)
            return Outcome(
                ok=True,
                value=report,
                notification=Notification(
                    "List repaired",
                    f"{len(report.after_ids)} model(s) detected; {len(report.recovered)} rebuilt without "
                    "original name or accuracy.",
                ),
            )

        return self._run("Repair", _do)

    # --- Save / load / delete ---------------------------------------------------

    def save_active(self, name: str) -> Outcome:
        """Store the active model under a new name (always a new record)."""

        def _do() -> Outcome:
            clean = name.strip()
            if not clean:
                raise ValueError("A model name is required")
            model = self.codec.load(self.active_id)
            latest = self.history.latest_for(clean)
            record = ModelRecord(
                id=make_model_id(clean),
                name=clean,
                size=SAVED_SIZE,
                last_modified=display_timestamp(),
                accuracy=latest.final_accuracy * 100 if latest else None,
            )
            eviction = self._save_new_artifact(model, record)
            return Outcome(
                ok=True,
                value=record,
                notification=Notification(
                    "Model saved", f"Model '{clean}' was saved.{self._eviction_note(eviction)}"
                ),
            )

        return self._run("Saving model", _do)

    def load_model(self, model_id: str) -> Outcome:
        """Make model_id the active model."""

        def _do() -> Outcome:
            model = self.codec.load(model_id)
            self.codec.save(model, self.active_id)
            record = self.index.get(model_id)
            label = record.name if record else model_id
            return Outcome(
                ok=True,
                value=model,
                notification=Notification("Model loaded", f"'{label}' is now the active model."),
            )

        return self._run("Loading model", _do)

    def delete_model(self, model_id: str) -> Outcome:
        def _do() -> Outcome:
            with self._save_lock:
                removed = self.codec.delete(model_id)
                self.index.remove(model_id)
            return Outcome(
                ok=True,
                value=removed,
                notification=Notification("Model deleted", f"Model '{model_id}' was deleted."),
            )

        return self._run("Deleting model", _do)

    def duplicate_model(self, model_id: str) -> Outcome:
        def _do() -> Outcome:
            model = self.codec.load(model_id)
            original = self.index.get(model_id)
            base_name = original.name if original else model_id
            new_name = f"{base_name}{COPY_SUFFIX}"
            new_id = make_model_id(new_name)
            if original is not None:
                record = original.renamed(new_id, new_name, last_modified=display_timestamp())
            else:
                record = ModelRecord(id=new_id, name=new_name, size=SAVED_SIZE, last_modified=display_timestamp())
            eviction = self._save_new_artifact(model, record)
            return Outcome(
                ok=True,
                value=record,
                notification=Notification(
                    "Model duplicated", f"Copy created: '{new_name}'.{self._eviction_note(eviction)}"
                ),
            )

        return self._run("Duplicating model", _do)

    def clear_all_models(self) -> Outcome:
        """Delete every stored model except the active one."""

        def _do() -> Outcome:
            with self._save_lock:
                doomed = []
                for key in self.storage.keys():
                    parsed = parse_artifact_key(key)
                    if parsed is not None and parsed[0] != self.active_id:
                        doomed.append(key)
                for key in doomed:
                    self.storage.remove(key)
                self.index.keep_only(lambda r: r.id == self.active_id)
            return Outcome(
                ok=True,
                value=len(doomed),
                notification=Notification("Models deleted", "All models were deleted except the active model."),
            )

        return self._run("Clearing models", _do)

    def reset(self) -> Outcome:
        """Erase models, list, history and drawings."""

        def _do() -> Outcome:
            with self._save_lock:
                for key in (INDEX_KEY, HISTORY_KEY, DRAWINGS_KEY):
                    self.storage.remove(key)
                doomed = [
                    key
                    for key in self.storage.keys()
                    if is_artifact_key(key) or key.startswith(METRICS_KEY_PREFIX)
                ]
                for key in doomed:
                    self.storage.remove(key)
            return Outcome(ok=True, notification=Notification("Data erased", "All data was deleted."))

        return self._run("Reset", _do)

    # --- Import / export --------------------------------------------------------

    def import_model(
        self,
        descriptor_path: str | Path | None,
        weights_path: str | Path | None,
        name: str,
    ) -> Outcome:
        def _do() -> Outcome:
            record = self.gateway.import_artifact(descriptor_path, weights_path, name)
            return Outcome(
                ok=True,
                value=record,
                notification=Notification(
                    "Import successful", f"Model '{record.name}' was imported, saved and is now active."
                ),
            )

        return self._run("Import", _do)

    def import_files(self, paths: list[str | Path], name: str) -> Outcome:
        def _do() -> Outcome:
            record = self.gateway.import_files(paths, name)
            return Outcome(
                ok=True,
                value=record,
                notification=Notification(
                    "Import successful", f"Model '{record.name}' was imported, saved and is now active."
                ),
            )

        return self._run("Import", _do)

    def export_model(self, model_id: str, out_dir: str | Path, filename: str | None = None) -> Outcome:
        def _do() -> Outcome:
            exported: ExportedFiles = self.gateway.export_artifact(model_id, out_dir, filename)
            return Outcome(
                ok=True,
                value=exported,
                notification=Notification("Export successful", f"Model exported to {exported.descriptor}"),
            )

        return self._run("Export", _do)

    # --- Training / prediction --------------------------------------------------

    def add_sample(self, image: Any, label: Any) -> Outcome:
        def _do() -> Outcome:
            sample: TrainingSample = self.drawings.add(image, label)
            return Outcome(ok=True, value=sample)

        return self._run("Adding drawing", _do)

    def train(
        self,
        name: str,
        epochs: int | None = None,
        on_progress: ProgressCallback | None = None,
        cancel: CancelToken | None = None,
    ) -> Outcome:
        """Train a fresh classifier on the saved drawings, then save it and make it active.

        If the full save hits the quota, the model is still stored as the active
        model and the outcome is flagged partial.
        """

        def _do() -> Outcome:
            clean = name.strip()
            if not clean:
                raise ValueError("Please enter a name for this model")
            images, labels = self.drawings.as_arrays()
            if images.shape[0] == 0:
                raise ValueError("No training drawings; add samples first")

            settings = self.config.training
            total_epochs = epochs or settings.epochs
            model = create_sequential_classifier(
                hidden_units=settings.hidden_units,
                dropout_rate=settings.dropout_rate,
            )
            epoch_metrics: list[dict[str, Any]] = []

            def _on_epoch(epoch: int, logs: dict[str, float]) -> None:
                metrics = {
                    "epoch": epoch + 1,
                    "loss": logs["loss"],
                    "accuracy": logs["acc"],
                    "valLoss": logs.get("val_loss"),
                    "valAccuracy": logs.get("val_acc"),
                }
                epoch_metrics.append(metrics)
                logger.info(
                    "Epoch %d/%d: loss=%.4f accuracy=%.4f",
                    epoch + 1,
                    total_epochs,
                    logs["loss"],
                    logs["acc"],
                )
                if on_progress is not None:
                    on_progress(epoch + 1, total_epochs, metrics)

            started = time.monotonic()
            model.fit(
                images,
                labels,
                epochs=total_epochs,
                batch_size=settings.batch_size,
                validation_split=settings.validation_split,
                learning_rate=settings.learning_rate,
                on_epoch_end=_on_epoch,
                cancel=cancel,
                seed=settings.seed,
            )
            duration_ms = int((time.monotonic() - started) * 1000)
            final = epoch_metrics[-1]

            model_id = make_model_id(clean, prefix=self.active_id)
            record = ModelRecord(
                id=model_id,
                name=clean,
                size=SAVED_SIZE,
                last_modified=display_timestamp(),
                accuracy=final["accuracy"] * 100,
            )
            try:
                eviction = self._save_new_artifact(model, record, also_active=True)
            except StorageQuotaExceeded as e:
                logger.warning("Full save of '%s' failed (%s); saving as active model only", model_id, e)
                self.codec.save(model, self.active_id)
                result = TrainingResult(
                    model_id=None,
                    record=None,
                    session=None,
                    epoch_metrics=epoch_metrics,
                    eviction=None,
                    partial=True,
                )
                return Outcome(
                    ok=True,
                    value=result,
                    notification=Notification(
                        "Partial save",
                        "The model was trained but could only be saved as the active model. "
                        "Not enough storage space; run repair if the model list looks wrong.",
                        "warning",
                    ),
                )

            session = TrainingSession(
                id=model_id,
                timestamp=datetime.now().isoformat(),
                epochs=total_epochs,
                data_count=int(images.shape[0]),
                final_accuracy=final["accuracy"],
                final_loss=final["loss"],
                duration_ms=duration_ms,
                model_name=clean,
                model_id=model_id,
            )
            self.history.append(session)
            self.history.save_epoch_metrics(model_id, epoch_metrics)
            result = TrainingResult(
                model_id=model_id,
                record=record,
                session=session,
                epoch_metrics=epoch_metrics,
                eviction=eviction,
            )
            return Outcome(
                ok=True,
                value=result,
                notification=Notification(
                    "Training complete",
                    f"Model '{clean}' trained with {final['accuracy'] * 100:.1f}% accuracy."
                    f"{self._eviction_note(eviction)}",
                ),
            )

        return self._run("Training", _do)

    def predict(self, image: Any) -> Outcome:
        def _do() -> Outcome:
            try:
                model = self.codec.load(self.active_id)
            except ArtifactNotFound:
                return Outcome(
                    ok=False,
                    notification=Notification(
                        "No active model", "Train or import a model before making predictions."
                    ),
                )
            probs = model.predict(image)[0]
            digit = int(probs.argmax())
            return Outcome(
                ok=True,
                value=Prediction(digit=digit, confidence=float(probs[digit]), probabilities=probs.tolist()),
            )

        return self._run("Prediction", _do)

    # --- History / comparison ---------------------------------------------------

    def training_history(self, model_name: str | None = None) -> Outcome:
        def _do() -> Outcome:
            sessions = self.history.sessions_for(model_name) if model_name else self.history.list()
            return Outcome(ok=True, value=sessions)

        return self._run("Loading training history", _do)

    def compare(self, model_ids: list[str], test: bool = False) -> Outcome:
        """Metrics and ranked scores for model_ids; test=True also measures accuracy on the drawings."""

        def _do() -> Outcome:
            metrics = comparison.compute_metrics(model_ids, self.index.list(), self.history.list())
            if test:
                images, labels = self.drawings.as_arrays()
                if images.shape[0] == 0:
                    raise ValueError("No drawings available to test models on")
                for m in metrics:
                    try:
                        model = self.codec.load(m.model_id)
                    except (ArtifactNotFound, ArtifactCorrupt) as e:
                        logger.warning("Cannot test '%s': %s", m.model_id, e)
                        continue
                    m.test_accuracy = model.evaluate(images, labels) * 100
            return Outcome(ok=True, value=(metrics, comparison.rank(metrics)))

        return self._run("Model comparison", _do)
