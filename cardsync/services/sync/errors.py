"""Exception taxonomy for the sync engine."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync engine failures."""


class SyncConfigurationError(SyncError):
    """Run-level misconfiguration: missing API key, bad request, unknown source.

    Raised before any target is attempted.
    """


class TargetNotFoundError(SyncError):
    """A requested group or set could not be resolved."""


class BatchWriteError(SyncError):
    """A chunk exhausted its retries; earlier chunks stay committed."""

    def __init__(self, message: str, *, committed: int) -> None:
        super().__init__(message)
        self.committed = committed


class SlotTimeout(SyncError):
    """A concurrency slot was not granted within the acquire timeout."""
