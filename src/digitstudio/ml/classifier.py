"""
Sequential digit classifier built on PyTorch.

The lifecycle core treats this module as the external ML library: it builds,
fits, predicts and exposes weights as named float32 buffers, nothing more.
Architecture: Flatten -> Linear(hidden) -> ReLU -> Dropout -> Linear(classes).
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np
import torch
from torch import nn

from digitstudio.errors import TrainingCancelled

logger = logging.getLogger(__name__)

TOPOLOGY_FORMAT = "digitstudio-sequential"
TOPOLOGY_VERSION = 1
WEIGHT_DTYPE = "float32"

EpochCallback = Callable[[int, dict[str, float]], None]


@dataclass(frozen=True)
class ClassifierTopology:
    input_shape: tuple[int, int] = (28, 28)
    hidden_units: int = 128
    dropout_rate: float = 0.2
    output_classes: int = 10

    @property
    def input_size(self) -> int:
        return self.input_shape[0] * self.input_shape[1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "class_name": "Sequential",
            "format": TOPOLOGY_FORMAT,
            "version": TOPOLOGY_VERSION,
            "config": {
                "input_shape": list(self.input_shape),
                "hidden_units": self.hidden_units,
                "dropout_rate": self.dropout_rate,
                "output_classes": self.output_classes,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassifierTopology":
        """Parse a topology descriptor.

        Raises:
            ValueError: Unknown format/version or malformed config
        """
        if not isinstance(data, dict):
            raise ValueError(f"Topology must be an object, got {type(data).__name__}")
        if data.get("format") != TOPOLOGY_FORMAT:
            raise ValueError(f"Unsupported topology format: {data.get('format')!r}")
        if data.get("version") != TOPOLOGY_VERSION:
            raise ValueError(f"Unsupported topology version: {data.get('version')!r}")
        cfg = data.get("config")
        if not isinstance(cfg, dict):
            raise ValueError("Topology is missing its 'config' object")
        try:
            shape = cfg["input_shape"]
            if len(shape) != 2:
                raise ValueError(f"input_shape must have 2 dimensions, got {shape}")
            topology = cls(
                input_shape=(int(shape[0]), int(shape[1])),
                hidden_units=int(cfg["hidden_units"]),
                dropout_rate=float(cfg["dropout_rate"]),
                output_classes=int(cfg["output_classes"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed topology config: {e}") from e
        if min(topology.input_shape) <= 0 or topology.hidden_units <= 0 or topology.output_classes <= 1:
            raise ValueError(f"Topology has non-positive dimensions: {topology}")
        if not 0.0 <= topology.dropout_rate < 1.0:
            raise ValueError(f"dropout_rate must be in [0, 1), got {topology.dropout_rate}")
        return topology


class CancelToken:
    """Cooperative cancellation flag checked between training batches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TrainingCancelled("Training cancelled")


def set_seed(seed: int) -> None:
    """Set seed for torch, random, numpy."""
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)


def _as_batch(inputs: Any, topology: ClassifierTopology) -> torch.Tensor:
    arr = np.asarray(inputs, dtype=np.float32)
    if arr.ndim == 0:
        raise ValueError("Expected an image or a batch of images, got a scalar")
    if arr.ndim == 1 or (arr.ndim == 2 and arr.shape == topology.input_shape):
        arr = arr[np.newaxis, ...]
    arr = arr.reshape(arr.shape[0], *topology.input_shape)
    return torch.from_numpy(np.ascontiguousarray(arr))


class DigitClassifier:
    """Small feed-forward classifier plus the (de)serialization hooks the codec needs."""

    def __init__(self, topology: ClassifierTopology, module: nn.Module | None = None):
        self.topology = topology
        self.module = module if module is not None else self._build(topology)

    @staticmethod
    def _build(topology: ClassifierTopology) -> nn.Sequential:
        return nn.Sequential(
            nn.Flatten(),
            nn.Linear(topology.input_size, topology.hidden_units),
            nn.ReLU(),
            nn.Dropout(topology.dropout_rate),
            nn.Linear(topology.hidden_units, topology.output_classes),
        )

    # --- Training ---------------------------------------------------------------

    def fit(
        self,
        inputs: Any,
        labels: Any,
        epochs: int = 10,
        batch_size: int = 32,
        validation_split: float = 0.2,
        learning_rate: float = 1e-3,
        on_epoch_end: EpochCallback | None = None,
        cancel: CancelToken | None = None,
        seed: int | None = None,
    ) -> list[dict[str, float]]:
        """Train in place and return one metrics dict per epoch.

        The last validation_split fraction of the samples (before shuffling) is
        held out for val_loss/val_acc. Logs carry loss, acc and, when a
        validation set exists, val_loss and val_acc.

        Raises:
            TrainingCancelled: cancel was triggered mid-training
        """
        xs = _as_batch(inputs, self.topology)
        ys = torch.as_tensor(np.asarray(labels), dtype=torch.long)
        if xs.shape[0] != ys.shape[0]:
            raise ValueError(f"Got {xs.shape[0]} inputs but {ys.shape[0]} labels")
        if xs.shape[0] == 0:
            raise ValueError("Cannot fit on an empty dataset")

        split_at = int(np.floor(xs.shape[0] * (1 - validation_split)))
        split_at = max(split_at, 1)
        train_x, train_y = xs[:split_at], ys[:split_at]
        val_x, val_y = xs[split_at:], ys[split_at:]

        generator = torch.Generator()
        if seed is not None:
            set_seed(seed)
            generator.manual_seed(seed)

        optimizer = torch.optim.Adam(self.module.parameters(), lr=learning_rate)
        loss_fn = nn.CrossEntropyLoss()
        history: list[dict[str, float]] = []

        for epoch in range(epochs):
            self.module.train()
            order = torch.randperm(train_x.shape[0], generator=generator)
            total_loss = 0.0
            correct = 0
            for start in range(0, train_x.shape[0], batch_size):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                idx = order[start:start + batch_size]
                batch_x, batch_y = train_x[idx], train_y[idx]
                optimizer.zero_grad()
                logits = self.module(batch_x)
                loss = loss_fn(logits, batch_y)
                loss.backward()
                optimizer.step()
                total_loss += loss.item() * batch_x.shape[0]
                correct += int((logits.argmax(dim=1) == batch_y).sum().item())

            logs = {
                "loss": total_loss / train_x.shape[0],
                "acc": correct / train_x.shape[0],
            }
            if val_x.shape[0] > 0:
                val_loss, val_acc = self._score(val_x, val_y, loss_fn)
                logs["val_loss"] = val_loss
                logs["val_acc"] = val_acc
            history.append(logs)
            logger.debug("Epoch %d: loss=%.4f acc=%.4f", epoch + 1, logs["loss"], logs["acc"])
            if on_epoch_end is not None:
                on_epoch_end(epoch, logs)

        self.module.eval()
        return history

    def _score(self, xs: torch.Tensor, ys: torch.Tensor, loss_fn: nn.Module) -> tuple[float, float]:
        self.module.eval()
        with torch.no_grad():
            logits = self.module(xs)
            loss = loss_fn(logits, ys).item()
            acc = (logits.argmax(dim=1) == ys).float().mean().item()
        return loss, acc

    # --- Inference --------------------------------------------------------------

    def predict(self, inputs: Any) -> np.ndarray:
        """Return class probabilities with shape (n_samples, output_classes)."""
        xs = _as_batch(inputs, self.topology)
        self.module.eval()
        with torch.no_grad():
            probs = torch.softmax(self.module(xs), dim=1)
        return probs.numpy()

    def evaluate(self, inputs: Any, labels: Any) -> float:
        """Accuracy in [0, 1] on the given samples."""
        probs = self.predict(inputs)
        labels = np.asarray(labels)
        if labels.shape[0] == 0:
            return 0.0
        return float((probs.argmax(axis=1) == labels).mean())

    # --- Serialization hooks ----------------------------------------------------

    def state_specs(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "shape": list(tensor.shape), "dtype": WEIGHT_DTYPE}
            for name, tensor in self.module.state_dict().items()
        ]

    def state_bytes(self) -> bytes:
        """All weights as little-endian float32, concatenated in state_specs order."""
        chunks = []
        for tensor in self.module.state_dict().values():
            arr = tensor.detach().cpu().to(torch.float32).numpy()
            chunks.append(arr.astype("<f4").tobytes())
        return b"".join(chunks)

    def load_state_bytes(self, specs: list[dict[str, Any]], data: bytes) -> None:
        """Inverse of state_bytes.

        Raises:
            ValueError: specs disagree with the topology or data has the wrong size
        """
        expected = self.module.state_dict()
        names = [spec.get("name") for spec in specs]
        if names != list(expected):
            raise ValueError(f"Weight names {names} do not match topology {list(expected)}")
        state: dict[str, torch.Tensor] = {}
        offset = 0
        for spec in specs:
            if spec.get("dtype", WEIGHT_DTYPE) != WEIGHT_DTYPE:
                raise ValueError(f"Unsupported dtype for {spec['name']}: {spec.get('dtype')}")
            shape = tuple(int(d) for d in spec.get("shape", []))
            if shape != tuple(expected[spec["name"]].shape):
                raise ValueError(
                    f"Shape mismatch for {spec['name']}: {shape} vs {tuple(expected[spec['name']].shape)}"
                )
            count = int(np.prod(shape)) if shape else 1
            nbytes = count * 4
            if offset + nbytes > len(data):
                raise ValueError(
                    f"Weight data truncated at {spec['name']}: need {offset + nbytes} bytes, have {len(data)}"
                )
            arr = np.frombuffer(data, dtype="<f4", count=count, offset=offset).reshape(shape)
            state[spec["name"]] = torch.from_numpy(arr.astype(np.float32))
            offset += nbytes
        if offset != len(data):
            raise ValueError(f"Weight data has {len(data) - offset} trailing bytes")
        self.module.load_state_dict(state, strict=True)
        self.module.eval()


def create_sequential_classifier(
    input_shape: tuple[int, int] = (28, 28),
    hidden_units: int = 128,
    dropout_rate: float = 0.2,
    output_classes: int = 10,
) -> DigitClassifier:
    """Create a freshly initialized classifier."""
    topology = ClassifierTopology(
        input_shape=tuple(input_shape),
        hidden_units=hidden_units,
        dropout_rate=dropout_rate,
        output_classes=output_classes,
    )
    return DigitClassifier(topology)


def build_from_topology(data: dict[str, Any]) -> DigitClassifier:
    """Create a freshly initialized classifier from a topology descriptor."""
    return DigitClassifier(ClassifierTopology.from_dict(data))
