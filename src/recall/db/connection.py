"""SQLite connection layer with optional sqlite-vec extension."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

import sqlite_vec

from recall.db.models import VecStatus

logger = logging.getLogger(__name__)

# Loadable-extension locations tried when the bundled sqlite-vec build fails.
_EXTENSION_CANDIDATES: tuple[str, ...] = (
    "vec0",
    "./vec0.so",
    "./vec0.dylib",
    "./vec0.dll",
    "/usr/local/lib/vec0.so",
    "/usr/lib/vec0.so",
)


def detect_vec_extension(conn: sqlite3.Connection) -> VecStatus:
    """Try to enable sqlite-vec on *conn* and report whether vec0 tables work.

    Order: the ``sqlite_vec`` package's bundled extension, then the candidate
    paths above, then a vec0 smoke test (for builds with sqlite-vec compiled in).
    Never raises.
    """
    errors: list[str] = []
    can_load = hasattr(conn, "enable_load_extension")

    if can_load:
        try:
            conn.enable_load_extension(True)
        except sqlite3.Error as exc:
            can_load = False
            errors.append(f"extension loading disabled ({exc})")
    else:
        errors.append("this Python sqlite3 build cannot load extensions")

    if can_load:
        try:
            try:
                sqlite_vec.load(conn)
                version = conn.execute("SELECT vec_version()").fetchone()[0]
                return VecStatus(True, f"sqlite-vec {version} (bundled)")
            except sqlite3.Error as exc:
                errors.append(f"bundled sqlite-vec: {exc}")

            for path in _EXTENSION_CANDIDATES:
                try:
                    conn.load_extension(path)
                    return VecStatus(True, f"Loaded from {path}")
                except sqlite3.Error:
                    continue
        finally:
            conn.enable_load_extension(False)

    try:
        conn.execute(
            "CREATE VIRTUAL TABLE temp._vec_check USING vec0(embedding float[4])"
        )
        conn.execute("DROP TABLE temp._vec_check")
        return VecStatus(True, "Built-in sqlite-vec")
    except sqlite3.Error:
        pass

    reason = "sqlite-vec extension not found"
    if errors:
        reason = f"{reason}: {'; '.join(errors)}"
    return VecStatus(False, reason)


class Database:
    """Per-agent SQLite database with optional sqlite-vec vector search support."""

    def __init__(self, db_path: Path | str, *, vector: bool = True) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            vector: Probe for sqlite-vec on connect. False forces the
                in-process cosine fallback.
        """
        self.db_path = Path(db_path)
        self.vector = vector
        self.vec_status = VecStatus(False, "not connected")
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, detect sqlite-vec, and return the connection."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")

        if self.vector:
            self.vec_status = detect_vec_extension(conn)
        else:
            self.vec_status = VecStatus(False, "vector index disabled by configuration")

        if self.vec_status.available:
            logger.info("sqlite-vec available: %s", self.vec_status.reason)
        else:
            logger.warning(
                "sqlite-vec not available (%s); using in-process cosine fallback",
                self.vec_status.reason,
            )
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
