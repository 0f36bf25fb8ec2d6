"""
Side-by-side comparison of saved models.

Metrics come from the training history joined by model name; scores weight
accuracy (40), consistency (25), reliability from loss (20) and experience
from the number of sessions (15).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from digitstudio.lifecycle.history import TrainingSession
from digitstudio.lifecycle.index import ModelRecord

UNKNOWN_MODEL = "Unknown model"


@dataclass
class ComparisonMetrics:
    model_id: str
    model_name: str
    max_accuracy: float
    avg_accuracy: float
    min_loss: float
    avg_loss: float
    total_sessions: int
    total_epochs: int
    total_duration_ms: int
    last_trained: str
    is_imported: bool
    test_accuracy: float | None = None


@dataclass
class PerformanceScore:
    model_id: str
    model_name: str
    overall_score: float
    accuracy_score: float
    consistency_score: float
    reliability_score: float
    experience_score: float
    recommendation: str
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)


def _last_trained(sessions: list[TrainingSession]) -> str:
    latest = max(sessions, key=lambda s: s.timestamp)
    try:
        return datetime.fromisoformat(latest.timestamp).strftime("%d/%m/%Y")
    except ValueError:
        return latest.timestamp


def compute_metrics(
    model_ids: list[str],
    records: list[ModelRecord],
    history: list[TrainingSession],
) -> list[ComparisonMetrics]:
    by_id = {r.id: r for r in records}
    out = []
    for model_id in model_ids:
        record = by_id.get(model_id)
        if record is None:
            out.append(
                ComparisonMetrics(
                    model_id=model_id,
                    model_name=UNKNOWN_MODEL,
                    max_accuracy=0.0,
                    avg_accuracy=0.0,
                    min_loss=0.0,
                    avg_loss=0.0,
                    total_sessions=0,
                    total_epochs=0,
                    total_duration_ms=0,
                    last_trained="N/A",
                    is_imported=False,
                )
            )
            continue

        sessions = [s for s in history if s.model_name == record.name]
        if not sessions:
            accuracy = record.accuracy or 0.0
            out.append(
                ComparisonMetrics(
                    model_id=model_id,
                    model_name=record.name,
                    max_accuracy=accuracy,
                    avg_accuracy=accuracy,
                    min_loss=0.0,
                    avg_loss=0.0,
                    total_sessions=0,
                    total_epochs=0,
                    total_duration_ms=0,
                    last_trained="Imported model" if record.imported else "N/A",
                    is_imported=record.imported,
                )
            )
            continue

        accuracies = [s.final_accuracy * 100 for s in sessions]
        losses = [s.final_loss for s in sessions]
        out.append(
            ComparisonMetrics(
                model_id=model_id,
                model_name=record.name,
                max_accuracy=max(accuracies),
                avg_accuracy=sum(accuracies) / len(accuracies),
                min_loss=min(losses),
                avg_loss=sum(losses) / len(losses),
                total_sessions=len(sessions),
                total_epochs=sum(s.epochs for s in sessions),
                total_duration_ms=sum(s.duration_ms for s in sessions),
                last_trained=_last_trained(sessions),
                is_imported=record.imported,
            )
        )
    return out


def _recommendation(overall: float) -> str:
    if overall >= 80:
        return "excellent"
    if overall >= 65:
        return "good"
    if overall >= 45:
        return "average"
    return "poor"


def score(metrics: ComparisonMetrics) -> PerformanceScore:
    accuracy_score = min(metrics.max_accuracy / 100, 1) * 40

    variance = 0.0
    if metrics.total_sessions > 1 and metrics.max_accuracy > 0:
        variance = abs(metrics.max_accuracy - metrics.avg_accuracy) / metrics.max_accuracy
    consistency_score = max(0.0, 1 - variance) * 25

    reliability_score = 0.0
    if metrics.min_loss > 0:
        reliability_score = max(0.0, 1 - min(metrics.min_loss, 1)) * 20

    experience_score = min(metrics.total_sessions / 10, 1) * 15
    overall = accuracy_score + consistency_score + reliability_score + experience_score

    strengths: list[str] = []
    weaknesses: list[str] = []
    if metrics.max_accuracy >= 90:
        strengths.append("Very high accuracy")
    elif metrics.max_accuracy < 70:
        weaknesses.append("Low accuracy")
    if variance < 0.05:
        strengths.append("Very consistent")
    elif variance > 0.15:
        weaknesses.append("Variable results")
    if metrics.min_loss < 0.1:
        strengths.append("Low loss")
    elif metrics.min_loss > 0.5:
        weaknesses.append("High loss")
    if metrics.total_sessions >= 5:
        strengths.append("Well tested")
    elif metrics.total_sessions < 2:
        weaknesses.append("Little experience")
    if metrics.is_imported:
        weaknesses.append("No local history")

    return PerformanceScore(
        model_id=metrics.model_id,
        model_name=metrics.model_name,
        overall_score=overall,
        accuracy_score=accuracy_score,
        consistency_score=consistency_score,
        reliability_score=reliability_score,
        experience_score=experience_score,
        recommendation=_recommendation(overall),
        strengths=strengths,
        weaknesses=weaknesses,
    )


def rank(metrics: list[ComparisonMetrics]) -> list[PerformanceScore]:
    """Scores sorted best first."""
    return sorted((score(m) for m in metrics), key=lambda s: s.overall_score, reverse=True)
