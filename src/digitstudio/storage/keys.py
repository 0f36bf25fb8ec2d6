"""
Key layout of the persistent namespace.

    torch_models/<id>/model_topology   architecture descriptor (JSON)
    torch_models/<id>/weight_specs     name/shape/dtype per tensor (JSON)
    torch_models/<id>/weight_data      float32 weights, base64
    torch_models/<id>/info             save date and byte sizes (JSON)
    saved-models                       metadata index (JSON array)
    training-history                   training session log (JSON array)
    saved-drawings                     pending training samples (JSON array)
    metrics-<id>                       per-epoch metrics of one training run

The artifact id "digit-classifier" is the active model slot.
"""

from __future__ import annotations

MODEL_KEY_PREFIX = "torch_models"
ACTIVE_MODEL_ID = "digit-classifier"

INDEX_KEY = "saved-models"
HISTORY_KEY = "training-history"
DRAWINGS_KEY = "saved-drawings"
METRICS_KEY_PREFIX = "metrics-"

TOPOLOGY = "model_topology"
WEIGHT_SPECS = "weight_specs"
WEIGHT_DATA = "weight_data"
INFO = "info"

# Write order; deletion follows the same order.
SUB_KEYS = (TOPOLOGY, WEIGHT_SPECS, WEIGHT_DATA, INFO)


def artifact_key(artifact_id: str, sub_key: str) -> str:
    return f"{MODEL_KEY_PREFIX}/{artifact_id}/{sub_key}"


def artifact_keys(artifact_id: str) -> list[str]:
    return [artifact_key(artifact_id, sub) for sub in SUB_KEYS]


def metrics_key(artifact_id: str) -> str:
    return f"{METRICS_KEY_PREFIX}{artifact_id}"


def is_artifact_key(key: str) -> bool:
    return key.startswith(MODEL_KEY_PREFIX + "/")


def parse_artifact_key(key: str) -> tuple[str, str] | None:
    """Split 'torch_models/<id>/<sub>' into (id, sub); None for other keys."""
    if not is_artifact_key(key):
        return None
    parts = key.split("/")
    if len(parts) != 3 or not parts[1]:
        return None
    return parts[1], parts[2]


def topology_artifact_id(key: str) -> str | None:
    """Return the artifact id if key is a topology sub-key, else None."""
    parsed = parse_artifact_key(key)
    if parsed is None or parsed[1] != TOPOLOGY:
        return None
    return parsed[0]


def discover_artifact_ids(keys: list[str]) -> list[str]:
    """Artifact ids with a topology sub-key, in key enumeration order."""
    ids: list[str] = []
    seen: set[str] = set()
    for key in keys:
        artifact_id = topology_artifact_id(key)
        if artifact_id is not None and artifact_id not in seen:
            seen.add(artifact_id)
            ids.append(artifact_id)
    return ids
