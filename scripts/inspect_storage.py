#!/usr/bin/env python3
"""Inspect a storage file for debugging: keys, artifacts, index drift and usage.

Usage:
  python scripts/inspect_storage.py --storage .digitstudio/storage.json

  # Also write the full diagnostic report
  python scripts/inspect_storage.py --storage .digitstudio/storage.json --out report.yaml
"""

import argparse
import sys
from pathlib import Path

from digitstudio.config import StudioConfig
from digitstudio.errors import StudioError
from digitstudio.lifecycle.audit import ConsistencyAuditor
from digitstudio.lifecycle.index import MetadataIndex
from digitstudio.lifecycle.quota import QuotaEstimator, format_size
from digitstudio.storage.file_store import JsonFileStorage
from digitstudio.storage.memory import estimate_entry_bytes
from digitstudio.utils.files import get_package_version, write_report


def trunc(s: str, n: int = 80) -> str:
    """Truncate string for display."""
    if not s:
        return ""
    return s[:n] + ("..." if len(s) > n else "")


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect a digitstudio storage file for debugging")
    parser.add_argument("--storage", type=Path, required=True, help="Path to the storage JSON file")
    parser.add_argument("--out", type=Path, default=None, help="Write the diagnostic report (.yaml or .json)")
    parser.add_argument("--max_output", type=int, default=80, help="Max chars of each value to show")
    args = parser.parse_args()

    if not args.storage.exists():
        print(f"Storage file not found: {args.storage}", file=sys.stderr)
        return 1

    settings = StudioConfig.default().storage
    try:
        storage = JsonFileStorage(args.storage)
        index = MetadataIndex(storage)
        report = ConsistencyAuditor(storage, index).diagnose()
        snapshot = QuotaEstimator(
            storage,
            quota_bytes=settings.quota_bytes,
            char_width_bytes=settings.char_width_bytes,
            warn_ratio=settings.warn_ratio,
        ).analyze()
    except StudioError as e:
        print(f"Cannot inspect {args.storage}: {e}", file=sys.stderr)
        return 1

    # --- Keys ---
    print("\n" + "=" * 60)
    print("KEYS")
    print("=" * 60)
    print(f"File: {args.storage} | Keys: {len(storage.keys())}")
    for key, value in storage.items():
        size = estimate_entry_bytes(key, value, settings.char_width_bytes)
        print(f"  {key:<50} {format_size(size):>10}  {trunc(value, args.max_output)!r}")

    # --- Usage ---
    print("\n" + "=" * 60)
    print("USAGE")
    print("=" * 60)
    print(f"  used: {format_size(snapshot.used_bytes)} of {format_size(snapshot.total_budget_bytes)}")
    print(f"  percentage_used: {snapshot.percentage_used:.1f}% ({snapshot.status})")
    print(f"  artifacts: {snapshot.artifact_count}")

    # --- Drift ---
    print("\n" + "=" * 60)
    print("INDEX VS STORAGE")
    print("=" * 60)
    print(f"  index ids: {list(report.index_ids)}")
    print(f"  storage ids: {list(report.storage_ids)}")
    print(f"  orphaned artifacts: {list(report.orphaned_artifacts)}")
    print(f"  dangling records: {list(report.dangling_records)}")
    if report.duplicate_ids:
        print(f"  duplicate ids: {list(report.duplicate_ids)}")
    if report.incomplete_artifacts:
        print(f"  incomplete artifacts: {list(report.incomplete_artifacts)}")
    if not report.index_readable:
        print(f"  index unreadable: {report.index_error}")
    print(f"  drift: {report.has_drift}")

    if args.out:
        payload = {
            "digitstudio_version": get_package_version("digitstudio"),
            "storage": str(args.storage),
            "report": report.to_dict(),
        }
        write_report(args.out, payload)
        print(f"\nReport written to {args.out}")

    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
