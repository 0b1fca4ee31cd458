from __future__ import annotations

import sqlite3

from ..connection import iso_utcnow
from .tables import SCHEMA_MIGRATIONS_SQL, SCHEMA_VERSION_SQL

# Bump when a table gains or loses columns.
CURRENT_SCHEMA_VERSION = 2


class SchemaMigrator:
    """Records schema changes made in code.

    ``schema_version`` holds one row with the version the database was last
    brought up to. ``schema_migrations`` lists named changes (for example
    columns added to an older ``sync_status`` table) so an operator can see
    how a database evolved.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def ensure_table(self) -> None:
        self.conn.executescript(SCHEMA_MIGRATIONS_SQL + SCHEMA_VERSION_SQL)

    def get_version(self) -> int | None:
        self.ensure_table()
        row = self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row else None

    def ensure_current_version(self) -> None:
        current = self.get_version()
        if current is not None and current >= CURRENT_SCHEMA_VERSION:
            return
        self.conn.execute("DELETE FROM schema_version")
        self.conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (CURRENT_SCHEMA_VERSION, iso_utcnow()),
        )

    def has_migration(self, name: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM schema_migrations WHERE name = ?", (name,)
        ).fetchone()
        return row is not None

    def record(self, name: str, notes: str | None = None) -> None:
        if self.has_migration(name):
            return
        self.conn.execute(
            "INSERT INTO schema_migrations (name, applied_at, notes) VALUES (?, ?, ?)",
            (name, iso_utcnow(), notes),
        )

    def add_missing_columns(self, table: str, columns: dict[str, str], name: str) -> list[str]:
        """``ALTER TABLE`` in any of ``columns`` the table lacks; returns those added."""
        existing = {row[1] for row in self.conn.execute(f"PRAGMA table_info({table})")}
        added = [col for col in columns if col not in existing]
        for col in added:
            self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {col} {columns[col]}")
        if added:
            self.record(name, ",".join(added))
        return added
