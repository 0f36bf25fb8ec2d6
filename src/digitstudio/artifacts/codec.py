"""
Artifact codec: classifier <-> storage sub-keys, and classifier <-> file pair.

Storage layout per artifact (see digitstudio.storage.keys):
    model_topology   JSON topology descriptor
    weight_specs     JSON list of {name, shape, dtype}
    weight_data      base64 of little-endian float32 weights
    info             JSON {dateSaved, byte sizes}

Export layout:
    <name>.json          {format, generatedBy, modelTopology, weightsManifest}
    <name>.weights.bin   raw weights, in manifest order
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from digitstudio import __version__
from digitstudio.errors import (
    ArtifactCorrupt,
    ArtifactNotFound,
    MissingDescriptor,
    MissingWeightsFile,
    StorageError,
)
from digitstudio.ml.classifier import DigitClassifier, build_from_topology
from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import (
    INFO,
    TOPOLOGY,
    WEIGHT_DATA,
    WEIGHT_SPECS,
    artifact_key,
    artifact_keys,
    discover_artifact_ids,
)
from digitstudio.utils.files import write_export_file
from digitstudio.validation import DESCRIPTOR_SCHEMA, schema_errors

logger = logging.getLogger(__name__)

DESCRIPTOR_FORMAT = "digitstudio-layers-model"
WEIGHTS_SUFFIX = ".weights.bin"


@dataclass
class ExportedFile:
    filename: str
    size_bytes: int
    sha256: str


@dataclass
class ExportedFiles:
    descriptor: Path
    weights: Path | None
    files: list[ExportedFile] = field(default_factory=list)


class ArtifactCodec:
    """Reads and writes classifiers through a StoragePort.

    Load failures are split into ArtifactNotFound (nothing stored under the
    key, the normal state before the first save) and ArtifactCorrupt
    (something is stored but cannot be turned back into a classifier).
    """

    def __init__(self, storage: StoragePort):
        self.storage = storage

    # --- Storage side -----------------------------------------------------------

    def save(self, model: DigitClassifier, key: str) -> int:
        """Write all four sub-keys for key and return the approximate character count.

        Raises:
            StorageQuotaExceeded: The namespace rejected one of the writes; sub-keys
                written before the failure stay in place
        """
        topology_json = json.dumps(model.topology.to_dict())
        specs_json = json.dumps(model.state_specs())
        data = model.state_bytes()
        data_b64 = base64.b64encode(data).decode("ascii")
        info_json = json.dumps(
            {
                "dateSaved": datetime.now(timezone.utc).isoformat(),
                "modelTopologyType": "JSON",
                "modelTopologyBytes": len(topology_json),
                "weightSpecsBytes": len(specs_json),
                "weightDataBytes": len(data),
            }
        )
        entries = [
            (TOPOLOGY, topology_json),
            (WEIGHT_SPECS, specs_json),
            (WEIGHT_DATA, data_b64),
            (INFO, info_json),
        ]
        for sub_key, value in entries:
            self.storage.set(artifact_key(key, sub_key), value)
        written = sum(len(v) for _, v in entries)
        logger.info("Saved artifact '%s' (%d weight bytes)", key, len(data))
        return written

    def exists(self, key: str) -> bool:
        return self.storage.get(artifact_key(key, TOPOLOGY)) is not None

    def artifact_ids(self) -> list[str]:
        """Ids with a topology sub-key, in storage enumeration order."""
        return discover_artifact_ids(self.storage.keys())

    def load(self, key: str) -> DigitClassifier:
        """Rebuild the classifier stored under key.

        Raises:
            ArtifactNotFound: No topology stored under key
            ArtifactCorrupt: Stored parts are unparseable, missing or incompatible
        """
        topology_raw = self.storage.get(artifact_key(key, TOPOLOGY))
        if topology_raw is None:
            raise ArtifactNotFound(key)
        try:
            model = build_from_topology(json.loads(topology_raw))
        except (json.JSONDecodeError, ValueError) as e:
            raise ArtifactCorrupt(f"Artifact '{key}' has an invalid topology: {e}") from e

        specs_raw = self.storage.get(artifact_key(key, WEIGHT_SPECS))
        data_raw = self.storage.get(artifact_key(key, WEIGHT_DATA))
        if specs_raw is None:
            raise ArtifactCorrupt(f"Artifact '{key}' is missing its weight specs")
        if data_raw is None:
            raise ArtifactCorrupt(f"Artifact '{key}' is missing its weight data")
        try:
            specs = json.loads(specs_raw)
            data = base64.b64decode(data_raw.encode("ascii"), validate=True)
        except (json.JSONDecodeError, binascii.Error, UnicodeEncodeError) as e:
            raise ArtifactCorrupt(f"Artifact '{key}' has unreadable weights: {e}") from e
        if not isinstance(specs, list) or not all(isinstance(spec, dict) for spec in specs):
            raise ArtifactCorrupt(f"Artifact '{key}' weight specs must be a list of objects")
        try:
            model.load_state_bytes(specs, data)
        except (ValueError, KeyError, TypeError) as e:
            raise ArtifactCorrupt(f"Artifact '{key}' weights do not fit its topology: {e}") from e
        return model

    def delete(self, key: str) -> list[str]:
        """Remove every sub-key of key, one at a time.

        A failing remove is logged and skipped; the remaining sub-keys are still
        attempted. Returns the keys that were present and are now gone.
        """
        removed = []
        for sub in artifact_keys(key):
            if self.storage.get(sub) is None:
                continue
            try:
                self.storage.remove(sub)
            except StorageError as e:
                logger.warning("Could not remove '%s' (artifact left half-deleted): %s", sub, e)
                continue
            removed.append(sub)
        logger.info("Deleted artifact '%s' (%d sub-keys)", key, len(removed))
        return removed

    # --- File side --------------------------------------------------------------

    def export_to_files(self, model: DigitClassifier, out_dir: str | Path, name: str) -> ExportedFiles:
        """Write <name>.json and <name>.weights.bin into out_dir."""
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        weights_name = f"{name}{WEIGHTS_SUFFIX}"
        descriptor = {
            "format": DESCRIPTOR_FORMAT,
            "generatedBy": f"digitstudio {__version__}",
            "modelTopology": model.topology.to_dict(),
            "weightsManifest": [{"paths": [weights_name], "weights": model.state_specs()}],
        }
        descriptor_path = out_dir / f"{name}.json"
        weights_path = out_dir / weights_name
        contents = [
            (descriptor_path, json.dumps(descriptor, indent=2).encode("utf-8")),
            (weights_path, model.state_bytes()),
        ]
        files = []
        for path, data in contents:
            size, digest = write_export_file(path, data)
            files.append(ExportedFile(filename=path.name, size_bytes=size, sha256=digest))
        logger.info("Exported model to %s and %s", descriptor_path, weights_path)
        return ExportedFiles(descriptor=descriptor_path, weights=weights_path, files=files)

    def import_from_files(
        self,
        descriptor_path: str | Path | None,
        weights_path: str | Path | None = None,
    ) -> DigitClassifier:
        """Load a classifier from an exported descriptor (+ weights) pair.

        Raises:
            MissingDescriptor: descriptor_path is None or does not exist
            MissingWeightsFile: Descriptor lists weights but weights_path is None
            ArtifactCorrupt: Descriptor or weights are invalid
        """
        if descriptor_path is None:
            raise MissingDescriptor("A model descriptor (.json) file is required")
        descriptor_path = Path(descriptor_path)
        if not descriptor_path.exists():
            raise MissingDescriptor(f"Descriptor file not found: {descriptor_path}")

        descriptor = _read_descriptor(descriptor_path)
        try:
            model = build_from_topology(descriptor["modelTopology"])
        except ValueError as e:
            raise ArtifactCorrupt(f"{descriptor_path.name}: incompatible topology: {e}") from e

        specs: list[dict[str, Any]] = []
        paths: list[str] = []
        for group in descriptor["weightsManifest"]:
            specs.extend(group["weights"])
            paths.extend(group["paths"])
        if not specs:
            logger.warning(
                "%s has no weights manifest; importing topology with fresh weights",
                descriptor_path.name,
            )
            return model

        if weights_path is None:
            raise MissingWeightsFile(paths[0] if paths else f"{descriptor_path.stem}{WEIGHTS_SUFFIX}")
        weights_path = Path(weights_path)
        if not weights_path.exists():
            raise MissingWeightsFile(str(weights_path))
        try:
            model.load_state_bytes(specs, weights_path.read_bytes())
        except ValueError as e:
            raise ArtifactCorrupt(f"{weights_path.name}: weights do not fit the descriptor: {e}") from e
        return model


def _read_descriptor(path: Path) -> dict[str, Any]:
    try:
        descriptor = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ArtifactCorrupt(f"{path.name} is not valid JSON: {e}") from e
    errors = schema_errors(descriptor, DESCRIPTOR_SCHEMA)
    if errors:
        raise ArtifactCorrupt(f"{path.name} is not a model descriptor: {'; '.join(errors[:3])}")
    return descriptor
