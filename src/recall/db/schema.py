"""Database schema initialization."""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

FTS_TABLE = "chunks_fts"

# Rows are inserted explicitly (rowid = chunks.rowid) by the repository.
_CREATE_CHUNKS_FTS = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(text, tokenize='porter unicode61')
"""


def ensure_fts_table(conn: sqlite3.Connection) -> bool:
    """Create the FTS5 keyword index if possible. Returns False when FTS5 is missing."""
    try:
        conn.execute(_CREATE_CHUNKS_FTS)
        conn.commit()
        return True
    except sqlite3.OperationalError as exc:
        logger.warning("FTS5 unavailable (%s); keyword search falls back to LIKE", exc)
        return False


def initialize(conn: sqlite3.Connection) -> bool:
    """Initialize the schema (idempotent). Returns whether the FTS5 index exists."""
    from recall.db.migrations import run_migrations

    run_migrations(conn)
    return ensure_fts_table(conn)
