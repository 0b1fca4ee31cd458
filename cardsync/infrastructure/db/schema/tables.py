from __future__ import annotations

SCHEMA_VERSION_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);
"""

SCHEMA_MIGRATIONS_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    applied_at TEXT NOT NULL,
    notes TEXT
);
"""

SCHEMA_SYNC_TARGETS_SQL = """
CREATE TABLE IF NOT EXISTS sync_targets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    category_id TEXT,
    name TEXT,
    code TEXT,
    expected_count INTEGER,
    updated_at TEXT,
    UNIQUE (source, external_id)
);
CREATE INDEX IF NOT EXISTS idx_sync_targets_category ON sync_targets (source, category_id);
"""

SCHEMA_CATALOG_RECORDS_SQL = """
CREATE TABLE IF NOT EXISTS catalog_records (
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    group_id TEXT,
    category_id TEXT,
    name TEXT,
    attributes TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (source, external_id)
);
CREATE INDEX IF NOT EXISTS idx_catalog_records_group ON catalog_records (source, group_id);
"""

SCHEMA_SYNC_STATUS_SQL = """
CREATE TABLE IF NOT EXISTS sync_status (
    source TEXT NOT NULL,
    target_id TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'idle',
    last_error TEXT,
    synced_count INTEGER DEFAULT 0,
    last_synced_at TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (source, target_id)
);
CREATE INDEX IF NOT EXISTS idx_sync_status_state ON sync_status (state);
"""

SCHEMA_SYNC_CONTROL_SQL = """
CREATE TABLE IF NOT EXISTS sync_control (
    operation_type TEXT NOT NULL,
    operation_id TEXT NOT NULL,
    should_cancel INTEGER NOT NULL DEFAULT 0,
    created_by TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (operation_type, operation_id)
);
"""
