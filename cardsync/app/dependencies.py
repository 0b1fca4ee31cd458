"""Shared FastAPI dependencies for cardsync application components."""

from __future__ import annotations

import sqlite3
from typing import Annotated, Iterator

from fastapi import Depends

from cardsync.infrastructure.db import ensure_schema, get_connection
from cardsync.infrastructure.db.repositories import (ControlSignalRepository,
                                                     SyncStatusRepository,
                                                     TargetRepository)

__all__ = [
    "get_db_connection",
    "get_status_repository",
    "get_target_repository",
    "get_control_repository",
    "ControlSignalRepository",
    "SyncStatusRepository",
    "TargetRepository",
    "StatusRepositoryDep",
    "TargetRepositoryDep",
    "ControlRepositoryDep",
]

_db_path_override: str | None = None


def set_db_path(db_path: str | None) -> None:
    """Point request-scoped connections at ``db_path`` (``None`` restores config)."""
    global _db_path_override
    _db_path_override = db_path


def get_db_connection() -> Iterator[sqlite3.Connection]:
    """Provide a SQLite connection with the required schema ensured.

    Uses check_same_thread=False because FastAPI may run the dependency and
    the endpoint on different threads.
    """

    with get_connection(_db_path_override, check_same_thread=False) as conn:
        ensure_schema(conn)
        yield conn


def get_status_repository(
    conn: sqlite3.Connection = Depends(get_db_connection),
) -> SyncStatusRepository:
    return SyncStatusRepository(conn)


def get_target_repository(
    conn: sqlite3.Connection = Depends(get_db_connection),
) -> TargetRepository:
    return TargetRepository(conn)


def get_control_repository(
    conn: sqlite3.Connection = Depends(get_db_connection),
) -> ControlSignalRepository:
    return ControlSignalRepository(conn)


StatusRepositoryDep = Annotated[SyncStatusRepository, Depends(get_status_repository)]
TargetRepositoryDep = Annotated[TargetRepository, Depends(get_target_repository)]
ControlRepositoryDep = Annotated[ControlSignalRepository, Depends(get_control_repository)]
