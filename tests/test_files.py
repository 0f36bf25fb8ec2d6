"""Tests for export-file and report helpers."""

import hashlib
import json
from pathlib import Path

import yaml

from digitstudio.utils.files import get_package_version, write_export_file, write_report


def test_write_export_file_returns_size_and_digest(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "m.weights.bin"
    size, digest = write_export_file(path, b"\x00\x01\x02")
    assert path.read_bytes() == b"\x00\x01\x02"
    assert size == 3
    assert digest == hashlib.sha256(b"\x00\x01\x02").hexdigest()


def test_write_report_picks_format_from_suffix(tmp_path: Path) -> None:
    report = {"storage": "s.json", "report": {"orphaned_artifacts": ("a-1",), "has_drift": True}}

    write_report(tmp_path / "r.json", report)
    write_report(tmp_path / "r.yaml", report)

    assert json.loads((tmp_path / "r.json").read_text(encoding="utf-8"))["report"]["orphaned_artifacts"] == ["a-1"]
    loaded = yaml.safe_load((tmp_path / "r.yaml").read_text(encoding="utf-8"))
    assert loaded == {"storage": "s.json", "report": {"orphaned_artifacts": ["a-1"], "has_drift": True}}


def test_get_package_version_unknown_package() -> None:
    assert get_package_version("no-such-package-digitstudio-xyz") == "unknown"
