"""Tests for SQLite schema and migrations: idempotency, tables, indexes, FKs."""

from __future__ import annotations

import sqlite3

import pytest

from perf_proof.db.migrations import MIGRATIONS, initialize_database, run_migrations
from perf_proof.db.schema import (
    ALL_TABLE_NAMES,
    apply_schema,
    get_existing_indexes,
    get_existing_tables,
)


@pytest.fixture
def bare_conn():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    yield conn
    conn.close()


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, f"Expected table '{expected_table}' not found"

    def test_idempotent_double_apply(self, in_memory_db):
        apply_schema(in_memory_db)
        tables = get_existing_tables(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(tables)

    def test_snapshot_indexes_created(self, in_memory_db):
        indexes = get_existing_indexes(in_memory_db)
        assert "idx_snapshots_user_status" in indexes
        assert "idx_snapshots_user_date" in indexes
        assert "idx_evaluations_horizon" in indexes

    def test_foreign_keys_enforced(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO recommendation_evaluations
                    (snapshot_id, horizon_days, target_date, evaluated_at, data_quality)
                VALUES ('no-such-snapshot', 7, '2025-03-08', '2025-03-20T12:00:00+00:00', 'missing');
                """
            )

    def test_data_quality_check_constraint(self, in_memory_db, make_snapshot):
        snap = make_snapshot()
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO recommendation_evaluations
                    (snapshot_id, horizon_days, target_date, evaluated_at, data_quality)
                VALUES (?, 7, '2025-03-08', '2025-03-20T12:00:00+00:00', 'partial');
                """,
                (snap.snapshot_id,),
            )


class TestMigrations:
    def test_initialize_applies_every_migration(self, bare_conn):
        applied = initialize_database(bare_conn)
        assert applied == len(MIGRATIONS)
        assert "job_status" in get_existing_tables(bare_conn)
        assert "schema_versions" in get_existing_tables(bare_conn)

    def test_second_run_applies_nothing(self, bare_conn):
        initialize_database(bare_conn)
        assert run_migrations(bare_conn) == 0

    def test_versions_recorded(self, in_memory_db):
        rows = in_memory_db.execute(
            "SELECT version_id FROM schema_versions ORDER BY version_id;"
        ).fetchall()
        assert [r["version_id"] for r in rows] == list(MIGRATIONS)
