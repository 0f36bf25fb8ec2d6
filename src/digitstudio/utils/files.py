"""
Helpers for files that leave the namespace: exported model pairs and
diagnostic reports.
"""

import hashlib
import importlib.metadata
import json
from pathlib import Path
from typing import Any

import yaml


def write_export_file(path: Path, data: bytes) -> tuple[int, str]:
    """Write one exported file and return (size in bytes, sha256 hex digest).

    The digest is taken from the bytes written, so the file is not read back.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return len(data), hashlib.sha256(data).hexdigest()


def write_report(path: Path, report: dict[str, Any]) -> None:
    """Write a diagnostic report as JSON (.json) or YAML (anything else).

    Tuples become lists so the YAML output stays plain.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".json":
        path.write_text(json.dumps(report, indent=2) + "\n", encoding="utf-8")
        return
    path.write_text(yaml.safe_dump(_plain(report), sort_keys=False), encoding="utf-8")


def _plain(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def get_package_version(package_name: str) -> str:
    """Return installed package version or 'unknown'."""
    try:
        return importlib.metadata.version(package_name)
    except importlib.metadata.PackageNotFoundError:
        return "unknown"
