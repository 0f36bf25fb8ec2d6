"""Exception types for model storage and lifecycle operations."""


class StudioError(Exception):
    """Base exception for digitstudio errors."""

    pass


class ConfigError(StudioError):
    """Configuration file missing or malformed."""

    pass


class StorageError(StudioError):
    """Persistent key-value namespace could not be read or written."""

    pass


class StorageQuotaExceeded(StorageError):
    """A write failed because the namespace is over its capacity quota.

    Raised even after eviction had its chance; never retried automatically.
    """

    pass


class IndexCorrupt(StorageError):
    """The persisted metadata index is unreadable or fails validation."""

    pass


class ArtifactNotFound(StudioError):
    """No artifact is stored under the requested key (expected on first run)."""

    def __init__(self, key: str):
        super().__init__(f"No model artifact stored under '{key}'")
        self.key = key


class ArtifactCorrupt(StudioError):
    """Artifact descriptor present but unparseable or incompatible."""

    pass


class MissingWeightsFile(ArtifactCorrupt):
    """Descriptor references weights but no weights file was supplied."""

    def __init__(self, expected: str):
        super().__init__(
            f"Descriptor references weight data in '{expected}' but no weights file was provided"
        )
        self.expected = expected


class MissingDescriptor(StudioError):
    """Import attempted without the required descriptor (.json) file."""

    pass


class IndexDrift(StudioError):
    """Metadata index and stored artifacts disagree; resolved by repair()."""

    def __init__(self, orphaned: list[str], dangling: list[str]):
        super().__init__(
            f"Index drift: {len(orphaned)} orphaned artifact(s) {orphaned}, "
            f"{len(dangling)} dangling record(s) {dangling}"
        )
        self.orphaned = orphaned
        self.dangling = dangling


class TrainingCancelled(StudioError):
    """Training stopped through its cancel token."""

    pass


class InvalidSample(StudioError):
    """Drawing sample with a bad pixel count or a label outside 0-9."""

    pass
