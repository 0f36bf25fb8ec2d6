"""Append-only log of completed training runs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from digitstudio.errors import StorageError
from digitstudio.storage.base import StoragePort
from digitstudio.storage.keys import HISTORY_KEY, metrics_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingSession:
    """Summary of one training run.

    Sessions join to index records by model_name (several artifacts sharing a
    name share history); model_id records the artifact the run produced.
    """

    id: str
    timestamp: str
    epochs: int
    data_count: int
    final_accuracy: float
    final_loss: float
    duration_ms: int
    model_name: str
    model_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "epochs": self.epochs,
            "dataCount": self.data_count,
            "finalAccuracy": self.final_accuracy,
            "finalLoss": self.final_loss,
            "duration": self.duration_ms,
            "modelName": self.model_name,
            "modelId": self.model_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrainingSession":
        return cls(
            id=str(data["id"]),
            timestamp=str(data["timestamp"]),
            epochs=int(data["epochs"]),
            data_count=int(data.get("dataCount", 0)),
            final_accuracy=float(data["finalAccuracy"]),
            final_loss=float(data["finalLoss"]),
            duration_ms=int(data.get("duration", 0)),
            model_name=str(data["modelName"]),
            model_id=data.get("modelId"),
        )


class TrainingHistory:
    def __init__(self, storage: StoragePort):
        self.storage = storage

    def list(self) -> list[TrainingSession]:
        raw = self.storage.get(HISTORY_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [TrainingSession.from_dict(item) for item in items]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Training history is unreadable: {e}") from e

    def append(self, session: TrainingSession) -> None:
        sessions = self.list()
        sessions.append(session)
        self.storage.set(HISTORY_KEY, json.dumps([s.to_dict() for s in sessions]))
        logger.info(
            "Recorded training session for '%s' (acc %.1f%%)",
            session.model_name,
            session.final_accuracy * 100,
        )

    def sessions_for(self, model_name: str) -> list[TrainingSession]:
        return [s for s in self.list() if s.model_name == model_name]

    def sessions_for_model_id(self, model_id: str) -> list[TrainingSession]:
        return [s for s in self.list() if s.model_id == model_id]

    def latest_for(self, model_name: str) -> TrainingSession | None:
        sessions = self.sessions_for(model_name)
        if not sessions:
            return None
        return max(sessions, key=lambda s: s.timestamp)

    def save_epoch_metrics(self, model_id: str, metrics: list[dict[str, Any]]) -> None:
        self.storage.set(metrics_key(model_id), json.dumps(metrics))

    def epoch_metrics(self, model_id: str) -> list[dict[str, Any]]:
        raw = self.storage.get(metrics_key(model_id))
        return json.loads(raw) if raw else []

    def clear(self) -> None:
        self.storage.remove(HISTORY_KEY)
