from __future__ import annotations

import sqlite3
from typing import Any

from ....domain.models import SyncTarget
from ..connection import iso_utcnow
from ..schema import ensure_schema
from .base import BaseRepository


def _row_to_target(row: dict[str, Any]) -> SyncTarget:
    return SyncTarget(
        id=row.get("id"),
        source=row["source"],
        external_id=row["external_id"],
        category_id=row.get("category_id"),
        name=row.get("name"),
        code=row.get("code"),
        expected_count=row.get("expected_count"),
    )


class TargetRepository(BaseRepository):
    """Known groups/sets per source, keyed by ``(source, external_id)``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def upsert(self, target: SyncTarget) -> int:
        """Insert or update ``target`` and return its internal row id.

        ``expected_count`` is only overwritten when the new value is known.
        """
        self._execute(
            """
            INSERT INTO sync_targets (source, external_id, category_id, name, code, expected_count, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(source, external_id) DO UPDATE SET
                category_id = COALESCE(excluded.category_id, sync_targets.category_id),
                name = COALESCE(excluded.name, sync_targets.name),
                code = COALESCE(excluded.code, sync_targets.code),
                expected_count = COALESCE(excluded.expected_count, sync_targets.expected_count),
                updated_at = excluded.updated_at
            """,
            (
                target.source,
                target.external_id,
                target.category_id,
                target.name,
                target.code,
                target.expected_count,
                iso_utcnow(),
            ),
        )
        self.conn.commit()
        return int(
            self._fetch_scalar(
                "SELECT id FROM sync_targets WHERE source = ? AND external_id = ?",
                (target.source, target.external_id),
            )
        )

    def get(self, source: str, external_id: str) -> SyncTarget | None:
        row = self._fetch_one_as_dict(
            "SELECT * FROM sync_targets WHERE source = ? AND external_id = ?",
            (source, external_id),
        )
        return _row_to_target(row) if row else None

    def list(
        self,
        source: str,
        category_id: str | None = None,
        name_filter: str | None = None,
    ) -> list[SyncTarget]:
        query = "SELECT * FROM sync_targets WHERE source = ?"
        params: list[Any] = [source]
        if category_id is not None:
            query += " AND category_id = ?"
            params.append(category_id)
        if name_filter:
            query += " AND LOWER(COALESCE(name, '')) LIKE ?"
            params.append(f"%{name_filter.strip().lower()}%")
        query += " ORDER BY external_id"
        return [_row_to_target(row) for row in self._fetch_all_as_dicts(query, params)]
