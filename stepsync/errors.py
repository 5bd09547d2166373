from __future__ import annotations


class StepSyncError(Exception):
    """Base class for errors raised by the resolution engine."""


class ArtifactError(StepSyncError):
    """The step index artifact is missing, unreadable or not a valid StepIndex."""


class RuntimeListError(StepSyncError):
    """The runtime-list command failed; the folder keeps its previous index."""

    def __init__(self, message: str, folder: str = "", exit_code: int | None = None):
        super().__init__(message)
        self.folder = folder
        self.exit_code = exit_code


class UntrustedCommandError(RuntimeListError):
    """The runtime-list command was not confirmed as trusted for this folder."""
