"""Per-target sync state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

ERROR_MESSAGE_MAX_LENGTH = 255
STUCK_THRESHOLD = timedelta(minutes=15)


class SyncState(str, Enum):
    """Enumeration of sync states for a target."""

    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    ERROR = "error"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str | None) -> "SyncState":
        """Convert a stored string to a SyncState, defaulting to IDLE."""
        if not value:
            return cls.IDLE
        try:
            return cls(value.lower().strip())
        except ValueError:
            return cls.IDLE


# States an operator may force a stuck row into.
MANUAL_RESET_STATES = (SyncState.ERROR, SyncState.IDLE)


@dataclass
class SyncStatus:
    """Persisted status row for one target."""

    source: str
    target_id: str
    state: SyncState = SyncState.IDLE
    last_error: str | None = None
    synced_count: int = 0
    last_synced_at: datetime | None = None
    started_at: datetime | None = None
    updated_at: datetime | None = None
    operation_id: str | None = None

    def is_stuck(
        self,
        threshold: timedelta = STUCK_THRESHOLD,
        now: datetime | None = None,
    ) -> bool:
        """True when the row has stayed in ``syncing`` longer than ``threshold``."""
        if self.state is not SyncState.SYNCING or self.updated_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return current - self.updated_at > threshold


def truncate_error(message: str | None, limit: int = ERROR_MESSAGE_MAX_LENGTH) -> str | None:
    if message is None:
        return None
    text = str(message).strip() or "Unknown error"
    return text[:limit]


def resolve_terminal_state(
    *,
    committed: int,
    expected: int | None,
    error: str | None = None,
    cancelled: bool = False,
    written: int | None = None,
) -> SyncState:
    """Pick the terminal state for a run from the committed (stored) count.

    ``committed`` must come from storage, not from in-memory counters.
    ``written`` is what this run itself committed (defaults to
    ``committed``): a failure is ``partial`` only when this run stored rows
    before failing, so rows left by earlier runs never mask an error. An
    empty feed without error is ``completed`` with zero rows.
    """
    if cancelled:
        return SyncState.CANCELLED
    if error:
        this_run = committed if written is None else written
        return SyncState.PARTIAL if this_run > 0 else SyncState.ERROR
    if expected is not None and 0 < committed < expected:
        return SyncState.PARTIAL
    return SyncState.COMPLETED
