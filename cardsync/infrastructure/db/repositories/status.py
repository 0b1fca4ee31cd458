from __future__ import annotations

import sqlite3
from typing import Any

from ....domain.models import SyncState, SyncStatus
from ..connection import iso_utcnow, parse_iso
from ..schema import ensure_schema
from .base import BaseRepository


def _row_to_status(row: dict[str, Any]) -> SyncStatus:
    return SyncStatus(
        source=row["source"],
        target_id=row["target_id"],
        state=SyncState.from_string(row.get("state")),
        last_error=row.get("last_error"),
        synced_count=int(row.get("synced_count") or 0),
        last_synced_at=parse_iso(row.get("last_synced_at")),
        started_at=parse_iso(row.get("started_at")),
        updated_at=parse_iso(row.get("updated_at")),
        operation_id=row.get("operation_id"),
    )


class SyncStatusRepository(BaseRepository):
    """One persisted status row per ``(source, target_id)``; rows are never deleted."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def get(self, source: str, target_id: str) -> SyncStatus | None:
        row = self._fetch_one_as_dict(
            "SELECT * FROM sync_status WHERE source = ? AND target_id = ?",
            (source, target_id),
        )
        return _row_to_status(row) if row else None

    def mark_syncing(self, source: str, target_id: str, operation_id: str | None) -> None:
        now = iso_utcnow()
        self._execute(
            """
            INSERT INTO sync_status (source, target_id, state, last_error, started_at, updated_at, operation_id)
            VALUES (?, ?, ?, NULL, ?, ?, ?)
            ON CONFLICT(source, target_id) DO UPDATE SET
                state = excluded.state,
                last_error = NULL,
                started_at = excluded.started_at,
                updated_at = excluded.updated_at,
                operation_id = excluded.operation_id
            """,
            (source, target_id, SyncState.SYNCING.value, now, now, operation_id),
        )
        self.conn.commit()

    def set_state(
        self,
        source: str,
        target_id: str,
        state: SyncState,
        *,
        synced_count: int | None = None,
        last_error: str | None = None,
        touch_synced_at: bool = False,
    ) -> None:
        """Write ``state`` for a target, creating the row if needed.

        ``synced_count`` is left unchanged when ``None``.
        """
        now = iso_utcnow()
        synced_at = now if touch_synced_at else None
        self._execute(
            """
            INSERT INTO sync_status (source, target_id, state, last_error, synced_count, last_synced_at, updated_at)
            VALUES (?, ?, ?, ?, COALESCE(?, 0), ?, ?)
            ON CONFLICT(source, target_id) DO UPDATE SET
                state = excluded.state,
                last_error = excluded.last_error,
                synced_count = COALESCE(?, sync_status.synced_count),
                last_synced_at = COALESCE(excluded.last_synced_at, sync_status.last_synced_at),
                updated_at = excluded.updated_at
            """,
            (
                source,
                target_id,
                state.value,
                last_error,
                synced_count,
                synced_at,
                now,
                synced_count,
            ),
        )
        self.conn.commit()

    def list(self, source: str | None = None, state: SyncState | None = None) -> list[SyncStatus]:
        query = "SELECT * FROM sync_status WHERE 1 = 1"
        params: list[Any] = []
        if source is not None:
            query += " AND source = ?"
            params.append(source)
        if state is not None:
            query += " AND state = ?"
            params.append(state.value)
        query += " ORDER BY source, target_id"
        return [_row_to_status(row) for row in self._fetch_all_as_dicts(query, params)]

    def list_syncing_before(self, cutoff_iso: str) -> list[SyncStatus]:
        rows = self._fetch_all_as_dicts(
            "SELECT * FROM sync_status WHERE state = ? AND updated_at < ? ORDER BY updated_at",
            (SyncState.SYNCING.value, cutoff_iso),
        )
        return [_row_to_status(row) for row in rows]
