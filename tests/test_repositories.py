import sqlite3

import pytest

from cardsync.domain.models import Record, SyncState, SyncTarget
from cardsync.infrastructure.db import (CURRENT_SCHEMA_VERSION, ensure_schema,
                                        get_connection)
from cardsync.infrastructure.db.repositories import (RecordRepository,
                                                     SyncStatusRepository,
                                                     TargetRepository)


def test_schema_is_idempotent(db_path):
    with get_connection(db_path) as conn:
        ensure_schema(conn)
        ensure_schema(conn)
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"sync_targets", "catalog_records", "sync_status", "sync_control"} <= tables
    assert CURRENT_SCHEMA_VERSION >= 1


def test_target_upsert_keeps_known_values(db_path):
    with get_connection(db_path) as conn:
        repo = TargetRepository(conn)
        first = repo.upsert(
            SyncTarget(source="justtcg", external_id="base-set", category_id="pokemon", name="Base Set", expected_count=102)
        )
        second = repo.upsert(SyncTarget(source="justtcg", external_id="base-set", name="Base Set (1999)"))
        target = repo.get("justtcg", "base-set")

    assert first == second
    assert target.id == first
    assert target.name == "Base Set (1999)"
    assert target.category_id == "pokemon"
    assert target.expected_count == 102


def test_target_listing_filters(db_path):
    with get_connection(db_path) as conn:
        repo = TargetRepository(conn)
        repo.upsert(SyncTarget(source="tcgcsv", external_id="2", category_id="3", name="Jungle"))
        repo.upsert(SyncTarget(source="tcgcsv", external_id="1", category_id="3", name="Base Set"))
        repo.upsert(SyncTarget(source="tcgcsv", external_id="9", category_id="1", name="Alpha"))

        assert [t.external_id for t in repo.list("tcgcsv", "3")] == ["1", "2"]
        assert [t.external_id for t in repo.list("tcgcsv", name_filter="JUNG")] == ["2"]
        assert repo.list("justtcg") == []


def test_record_upsert_replaces_by_key(db_path):
    with get_connection(db_path) as conn:
        repo = RecordRepository(conn)
        repo.upsert_batch("tcgcsv", [Record("1", "Old", group_id="g", attributes={"price": "1.00"})])
        repo.upsert_batch("tcgcsv", [Record("1", "New", group_id="g", attributes={"price": "2.00"})])
        row = repo.get("tcgcsv", "1")

        assert repo.count_for_group("tcgcsv", "g") == 1
        assert row["name"] == "New"
        assert row["attributes"] == {"price": "2.00"}
        assert [r["external_id"] for r in repo.list_for_group("tcgcsv", "g")] == ["1"]
        assert repo.upsert_batch("tcgcsv", []) == 0


def test_failed_batch_rolls_back(db_path):
    with get_connection(db_path) as conn:
        repo = RecordRepository(conn)
        with pytest.raises(sqlite3.Error):
            repo.upsert_batch("tcgcsv", [Record("1", "ok", group_id="g"), Record("2", "bad", group_id="g", kind=None)])
        assert repo.count_for_group("tcgcsv", "g") == 0


def test_status_rows_filter_by_state(db_path):
    with get_connection(db_path) as conn:
        repo = SyncStatusRepository(conn)
        repo.mark_syncing("tcgcsv", "a", "op")
        repo.set_state("tcgcsv", "a", SyncState.COMPLETED, synced_count=10, touch_synced_at=True)
        repo.set_state("tcgcsv", "b", SyncState.ERROR, last_error="boom")
        repo.set_state("tcgcsv", "a", SyncState.ERROR, last_error="later")

        errors = repo.list(state=SyncState.ERROR)
        a = repo.get("tcgcsv", "a")

    assert [s.target_id for s in errors] == ["a", "b"]
    assert a.synced_count == 10
    assert a.last_synced_at is not None


def test_old_status_table_gains_run_columns(tmp_path):
    path = tmp_path / "old.db"
    with get_connection(path) as conn:
        conn.execute(
            "CREATE TABLE sync_status (source TEXT NOT NULL, target_id TEXT NOT NULL, "
            "state TEXT NOT NULL DEFAULT 'idle', last_error TEXT, synced_count INTEGER DEFAULT 0, "
            "last_synced_at TEXT, updated_at TEXT NOT NULL, PRIMARY KEY (source, target_id))"
        )
        conn.commit()
        ensure_schema(conn)
        ensure_schema(conn)
        columns = {row[1] for row in conn.execute("PRAGMA table_info(sync_status)")}
        migrations = conn.execute("SELECT name, notes FROM schema_migrations").fetchall()
        version = conn.execute("SELECT version FROM schema_version").fetchall()

    assert {"started_at", "operation_id"} <= columns
    assert migrations == [("add_sync_status_run_columns_v2", "started_at,operation_id")]
    assert version == [(CURRENT_SCHEMA_VERSION,)]
