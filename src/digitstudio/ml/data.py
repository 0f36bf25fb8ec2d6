"""
Drawing samples waiting to be trained on.

Samples are 28x28 grayscale drawings flattened to 784 floats, stored with
their digit label as a JSON array under the "saved-drawings" key.
"""

from __future__ import annotations

import json
import logging
import random
import string
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

import numpy as np

from digitstudio.errors import InvalidSample, StorageError
from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import DRAWINGS_KEY
from digitstudio.utils.ids import now_ms

logger = logging.getLogger(__name__)

IMAGE_SIDE = 28
IMAGE_PIXELS = IMAGE_SIDE * IMAGE_SIDE
NUM_CLASSES = 10


@dataclass(frozen=True)
class TrainingSample:
    id: str
    image: list[float]
    label: int
    timestamp: str


def _sample_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{now_ms()}-{suffix}"


def validate_sample(image: Any, label: Any) -> tuple[list[float], int]:
    """Check pixel count and label range; return normalized (image, label)."""
    try:
        label_int = int(label)
    except (TypeError, ValueError) as e:
        raise InvalidSample(f"Label must be a digit 0-9, got {label!r}") from e
    if label_int != label and not isinstance(label, str):
        raise InvalidSample(f"Label must be an integer, got {label!r}")
    if not 0 <= label_int < NUM_CLASSES:
        raise InvalidSample(f"Label must be between 0 and 9, got {label_int}")
    try:
        pixels = np.asarray(image, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as e:
        raise InvalidSample(f"Image must be a numeric array: {e}") from e
    if pixels.shape[0] != IMAGE_PIXELS:
        raise InvalidSample(f"Image must have {IMAGE_PIXELS} pixels, got {pixels.shape[0]}")
    if not np.isfinite(pixels).all():
        raise InvalidSample("Image contains non-finite pixel values")
    return pixels.tolist(), label_int


class DrawingStore:
    """Append/remove/clear access to the pending training samples."""

    def __init__(self, storage: StoragePort):
        self.storage = storage

    def list(self) -> list[TrainingSample]:
        raw = self.storage.get(DRAWINGS_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [
                TrainingSample(
                    id=str(item["id"]),
                    image=list(item["image"]),
                    label=int(item["label"]),
                    timestamp=str(item.get("timestamp", "")),
                )
                for item in items
            ]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Stored drawings are unreadable: {e}") from e

    def _write(self, samples: list[TrainingSample]) -> None:
        self.storage.set(DRAWINGS_KEY, json.dumps([asdict(s) for s in samples]))

    def add(self, image: Any, label: Any) -> TrainingSample:
        pixels, label_int = validate_sample(image, label)
        sample = TrainingSample(
            id=_sample_id(),
            image=pixels,
            label=label_int,
            timestamp=datetime.now().isoformat(),
        )
        samples = self.list()
        samples.append(sample)
        self._write(samples)
        logger.info("Stored drawing %s (label %d), %d pending", sample.id, label_int, len(samples))
        return sample

    def remove(self, sample_id: str) -> bool:
        samples = self.list()
        kept = [s for s in samples if s.id != sample_id]
        if len(kept) == len(samples):
            return False
        self._write(kept)
        return True

    def clear(self) -> None:
        self.storage.remove(DRAWINGS_KEY)

    def count(self) -> int:
        return len(self.list())

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (images with shape (n, 28, 28), labels with shape (n,))."""
        samples = self.list()
        if not samples:
            return (
                np.zeros((0, IMAGE_SIDE, IMAGE_SIDE), dtype=np.float32),
                np.zeros((0,), dtype=np.int64),
            )
        images = np.asarray([s.image for s in samples], dtype=np.float32)
        labels = np.asarray([s.label for s in samples], dtype=np.int64)
        return images.reshape(-1, IMAGE_SIDE, IMAGE_SIDE), labels
