"""
Configuration for storage, eviction and training.

Example (configs/studio.yaml):

storage:
  backend: file
  path: .digitstudio/storage.json
  quota_bytes: 5242880
eviction:
  safety_threshold_bytes: 4718592
  estimated_artifact_bytes: 500000
training:
  epochs: 10
  batch_size: 32

Environment overrides (also read from .env at the project root):
DIGITSTUDIO_STORAGE_PATH, DIGITSTUDIO_QUOTA_BYTES.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from digitstudio.errors import ConfigError
from digitstudio.storage.keys import ACTIVE_MODEL_ID

project_root = Path(__file__).parent.parent.parent
load_dotenv(project_root / ".env")

MIB = 1024 * 1024

REQUIRED_CONFIG_KEYS = {"storage", "eviction", "training"}
STORAGE_BACKENDS = ("file", "memory")


@dataclass(frozen=True)
class StorageSettings:
    backend: str = "file"
    path: str = ".digitstudio/storage.json"
    quota_bytes: int = 5 * MIB
    char_width_bytes: int = 2
    warn_ratio: float = 0.8


@dataclass(frozen=True)
class EvictionSettings:
    safety_threshold_bytes: int = int(4.5 * MIB)
    estimated_artifact_bytes: int = 500_000
    protected_id: str = ACTIVE_MODEL_ID


@dataclass(frozen=True)
class TrainingSettings:
    epochs: int = 10
    batch_size: int = 32
    validation_split: float = 0.2
    hidden_units: int = 128
    dropout_rate: float = 0.2
    learning_rate: float = 1e-3
    seed: int = 42


@dataclass(frozen=True)
class StudioConfig:
    storage: StorageSettings = field(default_factory=StorageSettings)
    eviction: EvictionSettings = field(default_factory=EvictionSettings)
    training: TrainingSettings = field(default_factory=TrainingSettings)

    @classmethod
    def default(cls) -> "StudioConfig":
        return _apply_env(cls())


def _section(cfg: dict[str, Any], name: str, settings_cls: type) -> Any:
    raw = cfg.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config '{name}' must be a mapping, got {type(raw).__name__}")
    known = set(settings_cls.__dataclass_fields__)
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Config '{name}' has unknown keys: {sorted(unknown)}")
    try:
        return settings_cls(**raw)
    except TypeError as e:
        raise ConfigError(f"Config '{name}' is invalid: {e}") from e


def _apply_env(config: StudioConfig) -> StudioConfig:
    storage = config.storage
    env_path = os.getenv("DIGITSTUDIO_STORAGE_PATH", "")
    env_quota = os.getenv("DIGITSTUDIO_QUOTA_BYTES", "")
    overrides: dict[str, Any] = {}
    if env_path.strip():
        overrides["path"] = env_path.strip()
    if env_quota.strip():
        try:
            overrides["quota_bytes"] = int(env_quota.strip())
        except ValueError as e:
            raise ConfigError(f"DIGITSTUDIO_QUOTA_BYTES must be an integer, got {env_quota!r}") from e
    if not overrides:
        return config
    merged = {**storage.__dict__, **overrides}
    return StudioConfig(
        storage=StorageSettings(**merged),
        eviction=config.eviction,
        training=config.training,
    )


def validate_config(config: StudioConfig) -> None:
    """Reject settings the lifecycle components cannot work with."""
    if config.storage.backend not in STORAGE_BACKENDS:
        raise ConfigError(
            f"storage.backend must be one of {STORAGE_BACKENDS}, got {config.storage.backend!r}"
        )
    if config.storage.quota_bytes <= 0:
        raise ConfigError("storage.quota_bytes must be positive")
    if config.storage.char_width_bytes <= 0:
        raise ConfigError("storage.char_width_bytes must be positive")
    if not 0 < config.storage.warn_ratio <= 1:
        raise ConfigError("storage.warn_ratio must be in (0, 1]")
    if config.eviction.safety_threshold_bytes > config.storage.quota_bytes:
        raise ConfigError(
            "eviction.safety_threshold_bytes must not exceed storage.quota_bytes "
            f"({config.eviction.safety_threshold_bytes} > {config.storage.quota_bytes})"
        )
    if config.eviction.estimated_artifact_bytes < 0:
        raise ConfigError("eviction.estimated_artifact_bytes must be >= 0")
    if not config.eviction.protected_id:
        raise ConfigError("eviction.protected_id must not be empty")
    if not 0 <= config.training.validation_split < 1:
        raise ConfigError("training.validation_split must be in [0, 1)")
    if config.training.epochs <= 0 or config.training.batch_size <= 0:
        raise ConfigError("training.epochs and training.batch_size must be positive")


def load_config(path: str | Path) -> StudioConfig:
    """Load and validate a studio config YAML."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a YAML object (dict).")
    missing = REQUIRED_CONFIG_KEYS - set(cfg)
    if missing:
        raise ConfigError(f"Config missing required top-level keys: {sorted(missing)}")

    config = StudioConfig(
        storage=_section(cfg, "storage", StorageSettings),
        eviction=_section(cfg, "eviction", EvictionSettings),
        training=_section(cfg, "training", TrainingSettings),
    )
    config = _apply_env(config)
    validate_config(config)
    return config
