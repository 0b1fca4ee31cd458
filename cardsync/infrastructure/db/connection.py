from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .config import get_db_options, get_default_timeout, get_path_config


class DatabaseError(Exception):
    """Connecting to or configuring the SQLite database failed."""


def _iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def iso_utcnow() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""
    return _iso(datetime.now(timezone.utc))


def iso_utc_ago(delta: timedelta) -> str:
    """``now - delta`` in the same format as :func:`iso_utcnow`, for range queries."""
    return _iso(datetime.now(timezone.utc) - delta)


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def apply_pragmas(
    conn: sqlite3.Connection,
    *,
    enable_wal: bool = True,
    foreign_keys: bool = True,
    busy_timeout_ms: int | None = None,
) -> None:
    """WAL lets status readers run while a sync writes; busy_timeout bounds lock waits."""
    pragmas = []
    if enable_wal:
        pragmas.append("journal_mode=WAL")
    if foreign_keys:
        pragmas.append("foreign_keys=ON")
    if busy_timeout_ms is not None:
        pragmas.append(f"busy_timeout={int(busy_timeout_ms)}")
    try:
        for pragma in pragmas:
            conn.execute(f"PRAGMA {pragma};")
    except sqlite3.Error as exc:
        raise DatabaseError(f"Failed to apply PRAGMAs: {exc}") from exc


@contextmanager
def get_connection(
    db_path: str | Path | None = None,
    *,
    timeout: float | None = None,
    enable_wal: bool | None = None,
    foreign_keys: bool | None = None,
    check_same_thread: bool = True,
) -> Iterator[sqlite3.Connection]:
    """Open the database, apply PRAGMAs and close it on exit.

    Defaults come from ``config.json``; every sync worker opens its own
    connection through here.
    """
    path = Path(db_path) if db_path is not None else get_path_config()["db_path"]
    path.parent.mkdir(parents=True, exist_ok=True)
    seconds = timeout if timeout is not None else get_default_timeout()
    options = get_db_options()
    try:
        conn = sqlite3.connect(path, timeout=seconds, check_same_thread=check_same_thread)
    except sqlite3.Error as exc:
        raise DatabaseError(f"Failed to connect to database {path}: {exc}") from exc
    try:
        apply_pragmas(
            conn,
            enable_wal=enable_wal if enable_wal is not None else bool(options.get("enable_wal", True)),
            foreign_keys=(
                foreign_keys if foreign_keys is not None else bool(options.get("foreign_keys", True))
            ),
            busy_timeout_ms=int(seconds * 1000),
        )
        yield conn
    finally:
        conn.close()
