"""JSON schema loading and validation for descriptors and the persisted index."""

import json
from importlib import resources
from typing import Any

import jsonschema

DESCRIPTOR_SCHEMA = "model_descriptor.schema.json"
INDEX_SCHEMA = "model_index.schema.json"

# Schema cache to avoid repeated file I/O
_SCHEMA_CACHE: dict[str, dict[str, Any]] = {}


def load_schema(name: str) -> dict[str, Any]:
    """
    Load a JSON schema shipped in digitstudio.data.schemas.

    Raises:
        FileNotFoundError: If schema file doesn't exist
    """
    if name in _SCHEMA_CACHE:
        return _SCHEMA_CACHE[name]
    try:
        schema_text = resources.files("digitstudio.data.schemas").joinpath(name).read_text()
    except (FileNotFoundError, AttributeError) as e:
        raise FileNotFoundError(f"Schema not found: {name}") from e
    schema = json.loads(schema_text)
    _SCHEMA_CACHE[name] = schema
    return schema


def schema_errors(instance: Any, name: str) -> list[str]:
    """Return human-readable validation errors (empty when valid)."""
    validator = jsonschema.Draft7Validator(load_schema(name))
    errors = []
    for error in sorted(validator.iter_errors(instance), key=lambda e: list(e.absolute_path)):
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        errors.append(f"{location}: {error.message}")
    return errors
