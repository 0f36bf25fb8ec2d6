"""Import and export of models as a descriptor + weights file pair."""

from __future__ import annotations

import logging
from pathlib import Path

from digitstudio.artifacts.codec import WEIGHTS_SUFFIX, ArtifactCodec, ExportedFiles
from digitstudio.errors import MissingDescriptor
from digitstudio.lifecycle.index import MetadataIndex, ModelRecord
from digitstudio.storage.keys import ACTIVE_MODEL_ID
from digitstudio.utils.ids import display_timestamp, make_model_id, now_ms, slugify

logger = logging.getLogger(__name__)

IMPORTED_SIZE = "~400KB"


def pick_import_files(paths: list[str | Path]) -> tuple[Path | None, Path | None]:
    """Pick the descriptor (.json) and weights (.bin) out of a user file selection."""
    descriptor = None
    weights = None
    for raw in paths:
        path = Path(raw)
        if descriptor is None and path.suffix == ".json":
            descriptor = path
        elif weights is None and path.suffix == ".bin":
            weights = path
    return descriptor, weights


class ImportExportGateway:
    """Brings external models into storage and writes stored models out.

    Imports do not go through the eviction policy: a large import can fail
    with StorageQuotaExceeded where a save would have evicted first.
    """

    def __init__(self, codec: ArtifactCodec, index: MetadataIndex, active_id: str = ACTIVE_MODEL_ID):
        self.codec = codec
        self.index = index
        self.active_id = active_id

    def import_artifact(
        self,
        descriptor_path: str | Path | None,
        weights_path: str | Path | None,
        chosen_name: str,
    ) -> ModelRecord:
        """Load the file pair, store it under a fresh id and as the active model, index it.

        Raises:
            MissingDescriptor: No descriptor given (checked before any write)
            MissingWeightsFile / ArtifactCorrupt: Files cannot be loaded
            StorageQuotaExceeded: Storage is full
        """
        if descriptor_path is None:
            raise MissingDescriptor("Model descriptor (.json) file is missing")
        name = chosen_name.strip()
        if not name:
            raise ValueError("A name is required for the imported model")

        model = self.codec.import_from_files(descriptor_path, weights_path)
        model_id = make_model_id(name)
        self.codec.save(model, model_id)
        self.codec.save(model, self.active_id)

        record = ModelRecord(
            id=model_id,
            name=name,
            size=IMPORTED_SIZE,
            last_modified=display_timestamp(),
            imported=True,
        )
        self.index.add(record)
        logger.info("Imported '%s' as %s (now active)", name, model_id)
        return record

    def import_files(self, paths: list[str | Path], chosen_name: str) -> ModelRecord:
        descriptor, weights = pick_import_files(paths)
        return self.import_artifact(descriptor, weights, chosen_name)

    def export_filename(self, model_id: str) -> str:
        record = self.index.get(model_id)
        if record is not None and record.name.strip():
            return slugify(record.name)
        return f"model-{now_ms()}"

    def export_artifact(
        self,
        model_id: str,
        out_dir: str | Path,
        suggested_filename: str | None = None,
    ) -> ExportedFiles:
        """Write the stored model as <name>.json + <name>.weights.bin.

        Raises:
            ArtifactNotFound / ArtifactCorrupt: The stored model cannot be loaded
        """
        model = self.codec.load(model_id)
        name = slugify(suggested_filename) if suggested_filename else self.export_filename(model_id)
        if name.endswith(".json"):
            name = name[: -len(".json")]
        if name.endswith(WEIGHTS_SUFFIX):
            name = name[: -len(WEIGHTS_SUFFIX)]
        exported = self.codec.export_to_files(model, out_dir, name)
        logger.info("Exported %s to %s", model_id, exported.descriptor.parent)
        return exported
