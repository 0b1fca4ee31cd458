from __future__ import annotations

import sqlite3
from typing import Any

from ..connection import iso_utcnow
from ..schema import ensure_schema
from .base import BaseRepository

GLOBAL_OPERATION_ID = "*"
GLOBAL_STOP_TYPES = ("force_stop", "emergency_stop")


class ControlSignalRepository(BaseRepository):
    """Operator-written cancellation signals in ``sync_control``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def set_signal(
        self,
        operation_type: str,
        operation_id: str,
        should_cancel: bool = True,
        created_by: str | None = None,
    ) -> None:
        self._execute(
            """
            INSERT INTO sync_control (operation_type, operation_id, should_cancel, created_by, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(operation_type, operation_id) DO UPDATE SET
                should_cancel = excluded.should_cancel,
                created_by = excluded.created_by,
                created_at = excluded.created_at
            """,
            (operation_type, operation_id, int(bool(should_cancel)), created_by, iso_utcnow()),
        )
        self.conn.commit()

    def clear_signal(self, operation_type: str, operation_id: str) -> int:
        cur = self._execute(
            "DELETE FROM sync_control WHERE operation_type = ? AND operation_id = ?",
            (operation_type, operation_id),
        )
        self.conn.commit()
        return cur.rowcount

    def is_cancel_requested(self, operation_type: str, operation_id: str) -> bool:
        """True when the run's own row, a global row, or a stop-type row asks to cancel."""
        placeholders = ", ".join("?" for _ in GLOBAL_STOP_TYPES)
        value = self._fetch_scalar(
            f"""
            SELECT 1 FROM sync_control
            WHERE should_cancel = 1 AND (
                (operation_type = ? AND operation_id IN (?, ?))
                OR operation_type IN ({placeholders})
            )
            LIMIT 1
            """,
            (operation_type, operation_id, GLOBAL_OPERATION_ID, *GLOBAL_STOP_TYPES),
        )
        return bool(value)

    def list(self) -> list[dict[str, Any]]:
        return self._fetch_all_as_dicts(
            "SELECT operation_type, operation_id, should_cancel, created_by, created_at "
            "FROM sync_control ORDER BY created_at DESC"
        )
