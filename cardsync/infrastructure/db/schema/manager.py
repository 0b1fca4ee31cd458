from __future__ import annotations

import sqlite3

from .migrations import SchemaMigrator
from .tables import (SCHEMA_CATALOG_RECORDS_SQL, SCHEMA_SYNC_CONTROL_SQL,
                     SCHEMA_SYNC_STATUS_SQL, SCHEMA_SYNC_TARGETS_SQL)

# Run-tracking columns on sync_status, added in place so older databases upgrade.
SYNC_STATUS_RUN_COLUMNS = {
    "started_at": "TEXT",
    "operation_id": "TEXT",
}


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create every cardsync table and bring older ones up to date. Idempotent."""
    migrator = SchemaMigrator(conn)
    migrator.ensure_table()
    for script in (
        SCHEMA_SYNC_TARGETS_SQL,
        SCHEMA_CATALOG_RECORDS_SQL,
        SCHEMA_SYNC_STATUS_SQL,
        SCHEMA_SYNC_CONTROL_SQL,
    ):
        conn.executescript(script)
    migrator.add_missing_columns(
        "sync_status", SYNC_STATUS_RUN_COLUMNS, "add_sync_status_run_columns_v2"
    )
    migrator.ensure_current_version()
    conn.commit()
