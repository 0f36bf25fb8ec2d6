"""CLI for the digit studio model store.

Every subcommand runs one Studio operation, prints its notification to stderr
and its result as JSON to stdout. Failed operations exit with status 1.
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any

import numpy as np

from digitstudio.config import StudioConfig, load_config
from digitstudio.errors import StudioError
from digitstudio.lifecycle.index import ModelRecord
from digitstudio.lifecycle.history import TrainingSession
from digitstudio.ml.classifier import DigitClassifier
from digitstudio.studio import Outcome, Studio
from digitstudio.utils.files import get_package_version

DEFAULT_CONFIG = "configs/studio.yaml"


def to_jsonable(value: Any) -> Any:
    """Convert operation results (dataclasses, records, paths, arrays) to JSON-ready data."""
    if isinstance(value, (ModelRecord, TrainingSession)):
        return value.to_dict()
    if isinstance(value, DigitClassifier):
        return value.topology.to_dict()
    if hasattr(value, "to_dict") and dataclasses.is_dataclass(value):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out = {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
        for prop in ("status", "free_bytes", "near_capacity", "starved"):
            if hasattr(type(value), prop):
                out[prop] = getattr(value, prop)
        return out
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def load_image(path: Path) -> np.ndarray:
    """Read a 28x28 drawing from .npy or a JSON array of 784 floats."""
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")
    if path.suffix == ".npy":
        return np.load(path)
    with open(path, encoding="utf-8") as f:
        return np.asarray(json.load(f), dtype=np.float32)


def resolve_config(config_path: str | None, storage_path: str | None, memory: bool) -> StudioConfig:
    if config_path:
        config = load_config(config_path)
    elif Path(DEFAULT_CONFIG).exists():
        config = load_config(DEFAULT_CONFIG)
    else:
        config = StudioConfig.default()
    if storage_path or memory:
        storage = dataclasses.replace(
            config.storage,
            backend="memory" if memory else "file",
            path=storage_path or config.storage.path,
        )
        config = dataclasses.replace(config, storage=storage)
    return config


def report(outcome: Outcome) -> int:
    note = outcome.notification
    if note is not None:
        print(f"[{note.variant}] {note.title}: {note.description}", file=sys.stderr)
    if outcome.value is not None:
        print(json.dumps(to_jsonable(outcome.value), indent=2))
    return 0 if outcome.ok else 1


def _progress(epoch: int, total: int, metrics: dict[str, Any]) -> None:
    print(
        f"epoch {epoch}/{total}: loss={metrics['loss']:.4f} accuracy={metrics['accuracy']:.4f}",
        file=sys.stderr,
    )


def run_command(studio: Studio, args: argparse.Namespace) -> Outcome:
    cmd = args.command
    if cmd == "status":
        return studio.storage_status()
    if cmd == "list":
        return studio.list_models(validate=args.validate)
    if cmd == "diagnose":
        return studio.diagnose()
    if cmd == "repair":
        return studio.repair(args.strategy)
    if cmd == "evict":
        return studio.free_space()
    if cmd == "import":
        return studio.import_files(args.files, args.name)
    if cmd == "export":
        return studio.export_model(args.model_id, args.out, args.filename)
    if cmd == "delete":
        return studio.delete_model(args.model_id)
    if cmd == "load":
        return studio.load_model(args.model_id)
    if cmd == "duplicate":
        return studio.duplicate_model(args.model_id)
    if cmd == "save-active":
        return studio.save_active(args.name)
    if cmd == "train":
        return studio.train(args.name, epochs=args.epochs, on_progress=_progress)
    if cmd == "predict":
        return studio.predict(load_image(args.image))
    if cmd == "history":
        return studio.training_history(args.model)
    if cmd == "compare":
        return studio.compare(args.model_ids, test=args.test)
    if cmd == "add-sample":
        return studio.add_sample(load_image(args.image), args.label)
    if cmd == "clear-models":
        return studio.clear_all_models()
    if cmd == "reset":
        return studio.reset()
    raise ValueError(f"Unknown command: {cmd}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="digitstudio - store, audit, import and export digit classifier models.",
    )
    parser.add_argument("--config", type=str, default=None, help=f"Config YAML (default: {DEFAULT_CONFIG} if present)")
    parser.add_argument("--storage", type=str, default=None, help="Override the storage file path")
    parser.add_argument("--memory", action="store_true", help="Use throwaway in-memory storage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_package_version('digitstudio')}")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Estimate storage usage against the quota")
    p = sub.add_parser("list", help="List saved models")
    p.add_argument("--validate", action="store_true", help="Also check the list against storage")
    sub.add_parser("diagnose", help="Report drift between the model list and storage")
    p = sub.add_parser("repair", help="Rebuild the model list from storage")
    p.add_argument("--strategy", choices=["rebuild", "merge"], default="rebuild")
    sub.add_parser("evict", help="Delete the first non-active model to free space")

    p = sub.add_parser("import", help="Import a model from a descriptor (.json) and weights (.bin)")
    p.add_argument("files", nargs="+", type=Path)
    p.add_argument("--name", required=True, help="Name for the imported model")
    p = sub.add_parser("export", help="Export a stored model to files")
    p.add_argument("model_id")
    p.add_argument("--out", type=Path, default=Path("."), help="Output directory")
    p.add_argument("--filename", default=None, help="Base filename (default: slug of the model name)")

    for name, help_text in (
        ("delete", "Delete a stored model"),
        ("load", "Make a stored model the active model"),
        ("duplicate", "Copy a stored model under '<name> (Copy)'"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("model_id")

    p = sub.add_parser("save-active", help="Save the active model under a new name")
    p.add_argument("--name", required=True)
    p = sub.add_parser("train", help="Train a new model on the stored drawings")
    p.add_argument("--name", required=True)
    p.add_argument("--epochs", type=int, default=None)
    p = sub.add_parser("predict", help="Classify a drawing with the active model")
    p.add_argument("--image", type=Path, required=True, help=".npy or JSON array of 784 floats")
    p = sub.add_parser("history", help="Show training sessions")
    p.add_argument("--model", default=None, help="Only sessions for this model name")
    p = sub.add_parser("compare", help="Compare and rank stored models")
    p.add_argument("model_ids", nargs="+")
    p.add_argument("--test", action="store_true", help="Also measure accuracy on the stored drawings")
    p = sub.add_parser("add-sample", help="Store a labelled drawing for training")
    p.add_argument("--image", type=Path, required=True)
    p.add_argument("--label", type=int, required=True)
    sub.add_parser("clear-models", help="Delete every model except the active one")
    sub.add_parser("reset", help="Erase all models, history and drawings")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = resolve_config(args.config, args.storage, args.memory)
        studio = Studio.from_config(config)
    except StudioError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        outcome = run_command(studio, args)
    except (OSError, ValueError) as e:
        print(f"Cannot read input: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(report(outcome))


if __name__ == "__main__":
    main()
