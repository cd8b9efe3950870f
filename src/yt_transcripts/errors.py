from __future__ import annotations

from enum import Enum


class PipelineError(Exception):
    """Base class for failures that abort a transcription run."""

    def __init__(self, message: str, *, phase: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        return self.message

    def describe(self) -> str:
        if self.phase:
            return f"{self.phase}: {self.message}"
        return self.message


class ConfigError(PipelineError):
    pass


class ValidationError(PipelineError):
    pass


class DownloadFailure(str, Enum):
    BLOCKED = "blocked"
    UNAVAILABLE = "unavailable"
    NO_FORMAT = "no_format"
    BINARY_MISSING = "binary_missing"
    OTHER = "other"


class DownloadError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        category: DownloadFailure = DownloadFailure.OTHER,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, phase=phase)
        self.category = category


class TranscriptionError(PipelineError):
    pass


class TranscriptionStalledError(TranscriptionError):
    pass


class PersistenceError(PipelineError):
    pass


class PipelineCancelled(PipelineError):
    pass


class CleanupWarning(RuntimeWarning):
    """Raised nowhere; logged when a temporary file cannot be removed."""
