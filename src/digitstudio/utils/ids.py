"""
Id and display-name helpers for stored models.
"""

import re
import time
from datetime import datetime

_WHITESPACE = re.compile(r"\s+")
_TRAILING_NUMBER = re.compile(r"-\d+$")


def slugify(name: str) -> str:
    """Replace whitespace runs with '-' (e.g. 'my model v1' -> 'my-model-v1')."""
    return _WHITESPACE.sub("-", name.strip())


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def make_model_id(name: str, timestamp_ms: int | None = None, prefix: str | None = None) -> str:
    """
    Build a fresh artifact id from a user-chosen name.

    Args:
        name: User-facing model name.
        timestamp_ms: Optional millisecond timestamp. If None, uses current time.
            Tests pass a fixed value for deterministic ids.
        prefix: Optional leading segment (training saves use "digit-classifier").

    Returns:
        Id in the form "<prefix>-<slug>-<timestamp_ms>".

    Examples:
        >>> make_model_id("my model", timestamp_ms=1700000000000)
        'my-model-1700000000000'
        >>> make_model_id("v2", timestamp_ms=5, prefix="digit-classifier")
        'digit-classifier-v2-5'
    """
    if timestamp_ms is None:
        timestamp_ms = now_ms()
    parts = [prefix] if prefix else []
    parts.append(slugify(name))
    parts.append(str(timestamp_ms))
    return "-".join(p for p in parts if p)


def display_name_from_id(artifact_id: str) -> str:
    """
    Recover a display name from an artifact id.

    Strips one trailing "-<digits>" segment and turns the remaining hyphens
    into spaces: "mon-modele-1712345678901" -> "mon modele".
    """
    return _TRAILING_NUMBER.sub("", artifact_id).replace("-", " ")


def display_timestamp(now: datetime | None = None) -> str:
    """Timestamp shown in model lists (e.g. "17/10/2026 14:30:52")."""
    if now is None:
        now = datetime.now()
    return now.strftime("%d/%m/%Y %H:%M:%S")
