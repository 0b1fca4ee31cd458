from .base import BaseRepository
from .control import (GLOBAL_OPERATION_ID, GLOBAL_STOP_TYPES,
                      ControlSignalRepository)
from .records import RecordRepository
from .status import SyncStatusRepository
from .targets import TargetRepository

__all__ = [
    "BaseRepository",
    "ControlSignalRepository",
    "GLOBAL_OPERATION_ID",
    "GLOBAL_STOP_TYPES",
    "RecordRepository",
    "SyncStatusRepository",
    "TargetRepository",
]
