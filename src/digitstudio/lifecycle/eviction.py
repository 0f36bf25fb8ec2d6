"""Pre-emptive eviction of stored models before a save."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from digitstudio.artifacts.codec import ArtifactCodec
from digitstudio.lifecycle.index import MetadataIndex
from digitstudio.lifecycle.quota import QuotaEstimator, format_size
from digitstudio.storage.keys import ACTIVE_MODEL_ID

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_THRESHOLD_BYTES = int(4.5 * 1024 * 1024)
DEFAULT_ARTIFACT_ESTIMATE_BYTES = 500_000


@dataclass
class EvictionOutcome:
    """What ensure_capacity decided and did.

    Attributes:
        triggered: The projection crossed the safety threshold
        evicted_id: Artifact removed to make room (None if nothing was evictable
            or eviction was not needed)
        used_bytes: Estimated usage before the decision
        projected_bytes: used_bytes + the new artifact estimate
        threshold_bytes: Safety threshold compared against
        removed_keys: Storage keys actually deleted
    """

    triggered: bool
    evicted_id: str | None
    used_bytes: int
    projected_bytes: int
    threshold_bytes: int
    removed_keys: list[str] = field(default_factory=list)

    @property
    def starved(self) -> bool:
        """Eviction was needed but no artifact could be removed."""
        return self.triggered and self.evicted_id is None


class EvictionPolicy:
    """First-found eviction that never touches the protected artifact.

    Victim selection walks storage keys in enumeration order and takes the
    first artifact id that is not protected_id. This is not LRU; the only
    guarantee is that the active model survives.
    """

    def __init__(
        self,
        codec: ArtifactCodec,
        index: MetadataIndex,
        estimator: QuotaEstimator,
        safety_threshold_bytes: int = DEFAULT_SAFETY_THRESHOLD_BYTES,
        protected_id: str = ACTIVE_MODEL_ID,
    ):
        self.codec = codec
        self.index = index
        self.estimator = estimator
        self.safety_threshold_bytes = safety_threshold_bytes
        self.protected_id = protected_id

    def select_victim(self, exclude: set[str] | None = None) -> str | None:
        skip = {self.protected_id} | (exclude or set())
        for artifact_id in self.codec.artifact_ids():
            if artifact_id not in skip:
                return artifact_id
        return None

    def evict(self, artifact_id: str) -> list[str]:
        """Delete artifact_id's sub-keys, then its index records."""
        if artifact_id == self.protected_id:
            raise ValueError(f"Refusing to evict protected artifact '{artifact_id}'")
        removed = self.codec.delete(artifact_id)
        self.index.remove(artifact_id)
        return removed

    def ensure_capacity(
        self,
        estimated_new_artifact_bytes: int = DEFAULT_ARTIFACT_ESTIMATE_BYTES,
        used_bytes: int | None = None,
        exclude: set[str] | None = None,
    ) -> EvictionOutcome:
        """Evict one artifact if the upcoming write would cross the safety threshold.

        Args:
            estimated_new_artifact_bytes: Expected size of the artifact about to be written
            used_bytes: Current usage; measured with the estimator when None
            exclude: Extra ids that must not be chosen (e.g. the id being overwritten)

        Returns:
            EvictionOutcome; starved outcomes let the save proceed and possibly
            fail with StorageQuotaExceeded.
        """
        if used_bytes is None:
            used_bytes = self.estimator.used_bytes()
        projected = used_bytes + estimated_new_artifact_bytes
        outcome = EvictionOutcome(
            triggered=projected > self.safety_threshold_bytes,
            evicted_id=None,
            used_bytes=used_bytes,
            projected_bytes=projected,
            threshold_bytes=self.safety_threshold_bytes,
        )
        if not outcome.triggered:
            return outcome

        victim = self.select_victim(exclude)
        if victim is None:
            logger.warning(
                "Projected usage %s exceeds %s but no artifact can be evicted",
                format_size(projected),
                format_size(self.safety_threshold_bytes),
            )
            return outcome

        outcome.evicted_id = victim
        outcome.removed_keys = self.evict(victim)
        logger.info(
            "Evicted '%s' to make room (projected %s > threshold %s)",
            victim,
            format_size(projected),
            format_size(self.safety_threshold_bytes),
        )
        return outcome

    def evict_one(self) -> str | None:
        """Manually free space: evict the first non-protected artifact, if any."""
        victim = self.select_victim()
        if victim is None:
            return None
        self.evict(victim)
        return victim
