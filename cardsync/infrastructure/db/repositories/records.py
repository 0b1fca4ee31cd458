from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from typing import Any

from ....domain.models import Record
from ..connection import iso_utcnow
from ..schema import ensure_schema
from .base import BaseRepository

_UPSERT_SQL = """
INSERT INTO catalog_records (source, external_id, kind, group_id, category_id, name, attributes, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(source, external_id) DO UPDATE SET
    kind = excluded.kind,
    group_id = excluded.group_id,
    category_id = excluded.category_id,
    name = excluded.name,
    attributes = excluded.attributes,
    updated_at = excluded.updated_at
"""


class RecordRepository(BaseRepository):
    """Catalog rows keyed by ``(source, external_id)``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        ensure_schema(self.conn)

    def upsert_batch(self, source: str, records: Sequence[Record]) -> int:
        """Upsert ``records`` in one transaction and return how many were written.

        The whole chunk is rolled back when any row fails.
        """
        if not records:
            return 0
        now = iso_utcnow()
        rows = [
            (
                source,
                str(record.external_id),
                record.kind,
                record.group_id,
                record.category_id,
                record.name,
                json.dumps(record.attributes, sort_keys=True, default=str),
                now,
            )
            for record in records
        ]
        try:
            self._execute_many(_UPSERT_SQL, rows)
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        return len(rows)

    def count_for_group(self, source: str, group_id: str) -> int:
        return int(
            self._fetch_scalar(
                "SELECT COUNT(*) FROM catalog_records WHERE source = ? AND group_id = ?",
                (source, group_id),
            )
            or 0
        )

    def get(self, source: str, external_id: str) -> dict[str, Any] | None:
        row = self._fetch_one_as_dict(
            "SELECT * FROM catalog_records WHERE source = ? AND external_id = ?",
            (source, external_id),
        )
        if row and row.get("attributes"):
            row["attributes"] = json.loads(row["attributes"])
        return row

    def list_for_group(self, source: str, group_id: str) -> list[dict[str, Any]]:
        return self._fetch_all_as_dicts(
            "SELECT source, external_id, kind, group_id, category_id, name, updated_at "
            "FROM catalog_records WHERE source = ? AND group_id = ? ORDER BY external_id",
            (source, group_id),
        )
