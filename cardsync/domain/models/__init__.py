"""Domain models package.

This package contains domain model classes for cardsync.
"""

from .record import Record
from .status import (ERROR_MESSAGE_MAX_LENGTH, STUCK_THRESHOLD, SyncState,
                     SyncStatus, resolve_terminal_state, truncate_error)
from .target import SyncTarget

__all__ = [
    "ERROR_MESSAGE_MAX_LENGTH",
    "Record",
    "STUCK_THRESHOLD",
    "SyncState",
    "SyncStatus",
    "SyncTarget",
    "resolve_terminal_state",
    "truncate_error",
]
