"""Tests for the forward-only migration runner."""

from __future__ import annotations

from recall.db.connection import Database
from recall.db.migrations import MIGRATIONS, current_version, run_migrations


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    db = Database(tmp_path / "test.sqlite", vector=False)
    return db.connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_fresh_database_is_version_zero(tmp_path):
    conn = _fresh_conn(tmp_path)
    conn.execute(
        "CREATE TABLE schema_version (version INTEGER NOT NULL, applied_at DATETIME)"
    )
    assert current_version(conn) == 0
    conn.close()


def test_run_migrations_records_latest_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert current_version(conn) == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    rows = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert rows == len(MIGRATIONS)
    conn.close()


def test_migrations_do_not_create_vector_table(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert not _table_exists(conn, "chunks_vec")
    conn.close()
