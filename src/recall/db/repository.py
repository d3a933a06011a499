"""Repository for all recall database operations.

Single interface for: meta, files, chunks, the embedding cache, FTS5 keyword
search and sqlite-vec vector search (with an in-process cosine fallback).

Capability state (sqlite-vec availability, FTS5 availability, vector index
dimensions) lives on the Repository instance, so several independently
configured stores can coexist in one process.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Iterable, Sequence
from pathlib import Path

import numpy as np

from recall.config import DEFAULT_MAX_SNIPPET_CHARS
from recall.db.connection import Database, detect_vec_extension
from recall.db.models import (
    Chunk,
    EmbeddingCacheEntry,
    FileEntry,
    MemorySource,
    SearchResult,
    VecStatus,
)
from recall.db.schema import FTS_TABLE, initialize
from recall.db.vectors import (
    VECTOR_TABLE,
    VectorDecodeError,
    cosine_scores,
    decode_vector,
    distance_to_score,
    encode_vector,
    ensure_vec_table,
    vec_table_exists,
)

logger = logging.getLogger(__name__)

_META_VECTOR_DIMS = "vector_dims"

# Score for a substring match when FTS5 is unavailable.
_LIKE_MATCH_SCORE = 0.5

# Growth factor for the KNN k while a source filter is discarding rows.
_FILTER_OVERFETCH = 4


def _now_ms() -> int:
    return int(time.time() * 1000)


class Repository:
    """Data access layer for all recall database entities.

    Wraps an open sqlite3.Connection. Use Repository.open() to get a
    repository that owns its connection; otherwise the caller owns it.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        vec_status: VecStatus | None = None,
        *,
        fts_available: bool | None = None,
    ) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see recall.db.schema.initialize).
            vec_status: Result of the sqlite-vec check for *conn*. When None
                the check runs here, once.
            fts_available: Whether the FTS5 table exists. Detected when None.
        """
        self._conn = conn
        self._vec_status = vec_status if vec_status is not None else detect_vec_extension(conn)
        if fts_available is None:
            fts_available = self._table_exists(FTS_TABLE)
        self._fts_available = fts_available
        self._vector_dims: int | None = None

        if self._vec_status.available and vec_table_exists(conn):
            stored = self.get_meta(_META_VECTOR_DIMS)
            self._vector_dims = int(stored) if stored else None

    @classmethod
    def open(cls, db_path: Path | str, *, vector: bool = True) -> Repository:
        """Open (or create) the database at *db_path* and run migrations."""
        db = Database(db_path, vector=vector)
        conn = db.connect()
        fts_available = initialize(conn)
        return cls(conn, db.vec_status, fts_available=fts_available)

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def is_vector_available(self) -> bool:
        return self._vec_status.available

    def get_vector_status(self) -> VecStatus:
        return self._vec_status

    def is_fts_available(self) -> bool:
        return self._fts_available

    @property
    def vector_dims(self) -> int | None:
        """Dimensions of the current vec0 table, or None if there is none."""
        return self._vector_dims

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO meta (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Vector table lifecycle
    # ------------------------------------------------------------------

    def ensure_vector_table(self, dimensions: int) -> bool:
        """Make the vec0 index match *dimensions*.

        No-op when the table already exists with the same dimensions. On a
        change the table is dropped and recreated empty; chunk embeddings are
        untouched and rebuild_vector_index() repopulates the index.

        Returns:
            True if the table was (re)created, False otherwise (including when
            sqlite-vec is unavailable).
        """
        if not self._vec_status.available:
            return False
        try:
            rebuilt = ensure_vec_table(self._conn, dimensions, self._vector_dims)
        except sqlite3.Error as exc:
            logger.warning("Could not create %s: %s; using fallback search", VECTOR_TABLE, exc)
            self._vec_status = VecStatus(False, f"vec0 table creation failed: {exc}")
            self._vector_dims = None
            return False
        if rebuilt:
            if self._vector_dims is not None:
                logger.info(
                    "Vector dimensions changed %s -> %s; index rebuilt",
                    self._vector_dims,
                    dimensions,
                )
            self.set_meta(_META_VECTOR_DIMS, str(dimensions))
        self._vector_dims = dimensions
        return rebuilt

    def rebuild_vector_index(self) -> int:
        """Repopulate the vec0 table from stored chunk embeddings.

        Only embeddings whose dimensions match the index are inserted.
        Returns the number of rows indexed.
        """
        if not self._vec_status.available or self._vector_dims is None:
            return 0
        rows = self._conn.execute(
            "SELECT id, embedding FROM chunks WHERE embedding IS NOT NULL AND embedding_dims = ?",
            (self._vector_dims,),
        ).fetchall()
        with self._conn:
            self._conn.execute(f"DELETE FROM {VECTOR_TABLE}")
            for row in rows:
                self._conn.execute(
                    f"INSERT INTO {VECTOR_TABLE}(id, embedding) VALUES (?, ?)",
                    (row["id"], row["embedding"]),
                )
        return len(rows)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upsert_file(self, entry: FileEntry) -> None:
        """Insert or update a file record."""
        with self._conn:
            self._write_file(entry, _now_ms())

    def get_file(self, path: str) -> FileEntry | None:
        row = self._conn.execute(
            "SELECT path, source, hash, size, model, updated_at FROM files WHERE path = ?",
            (path,),
        ).fetchone()
        return _row_to_file(row) if row else None

    def get_all_file_paths(self) -> list[str]:
        """Return every indexed file path (used for the stale-file sweep)."""
        return [r["path"] for r in self._conn.execute("SELECT path FROM files ORDER BY path")]

    def delete_file(self, path: str) -> None:
        """Delete a file and all its chunks from the base table and both indexes.

        The vec and FTS deletes are each skipped if that index does not exist.
        """
        with self._conn:
            self._delete_chunks_for_path(path)
            self._conn.execute("DELETE FROM files WHERE path = ?", (path,))

    def replace_file(self, entry: FileEntry, chunks: Sequence[Chunk]) -> None:
        """Atomically record *entry* and replace all of its chunks with *chunks*.

        This is the only way a file's chunk set changes during indexing, so
        callers never observe a half-indexed file.

        Raises:
            ValueError: If a chunk belongs to a different path.
        """
        for chunk in chunks:
            if chunk.path != entry.path:
                raise ValueError(
                    f"chunk {chunk.id!r} belongs to {chunk.path!r}, not {entry.path!r}"
                )
        now = _now_ms()
        with self._conn:
            self._write_file(entry, now)
            self._delete_chunks_for_path(entry.path)
            for chunk in chunks:
                self._write_chunk(chunk, now)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def upsert_chunk(self, chunk: Chunk) -> None:
        """Insert or update a chunk and keep the FTS and vec indexes in sync."""
        with self._conn:
            self._write_chunk(chunk, _now_ms())

    def upsert_chunks(self, chunks: Iterable[Chunk]) -> None:
        """Upsert many chunks in a single transaction."""
        now = _now_ms()
        with self._conn:
            for chunk in chunks:
                self._write_chunk(chunk, now)

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            """
            SELECT id, path, source, start_line, end_line, text, hash, embedding, embedding_dims
            FROM chunks WHERE id = ?
            """,
            (chunk_id,),
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_by_path(self, path: str) -> list[Chunk]:
        rows = self._conn.execute(
            """
            SELECT id, path, source, start_line, end_line, text, hash, embedding, embedding_dims
            FROM chunks WHERE path = ? ORDER BY start_line
            """,
            (path,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    # ------------------------------------------------------------------
    # Embedding cache
    # ------------------------------------------------------------------

    def get_cached_embedding(self, text_hash: str) -> list[float] | None:
        """Return the cached vector for *text_hash*, or None (miss or corrupt row)."""
        row = self._conn.execute(
            "SELECT embedding, dims FROM embedding_cache WHERE hash = ?", (text_hash,)
        ).fetchone()
        if row is None:
            return None
        try:
            return decode_vector(row["embedding"], row["dims"])
        except VectorDecodeError as exc:
            logger.warning("Ignoring corrupt cache entry %s: %s", text_hash, exc)
            return None

    def get_cache_entry(self, text_hash: str) -> EmbeddingCacheEntry | None:
        row = self._conn.execute(
            "SELECT hash, embedding, dims, updated_at FROM embedding_cache WHERE hash = ?",
            (text_hash,),
        ).fetchone()
        if row is None:
            return None
        return EmbeddingCacheEntry(
            text_hash=row["hash"],
            vector=decode_vector(row["embedding"], row["dims"]),
            dimensions=row["dims"],
            updated_at=row["updated_at"],
        )

    def cache_embedding(self, text_hash: str, vector: Sequence[float]) -> None:
        self.cache_embeddings([(text_hash, vector)])

    def cache_embeddings(self, items: Iterable[tuple[str, Sequence[float]]]) -> None:
        """Store (hash, vector) pairs in the cache in one transaction."""
        now = _now_ms()
        with self._conn:
            for text_hash, vector in items:
                self._conn.execute(
                    """
                    INSERT INTO embedding_cache (hash, embedding, dims, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(hash) DO UPDATE SET
                        embedding = excluded.embedding,
                        dims = excluded.dims,
                        updated_at = excluded.updated_at
                    """,
                    (text_hash, encode_vector(vector), len(vector), now),
                )

    def count_cached_embeddings(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    def prune_embedding_cache(self, max_entries: int) -> int:
        """Keep only the *max_entries* most recently written cache rows.

        Returns the number of rows deleted.
        """
        with self._conn:
            cur = self._conn.execute(
                """
                DELETE FROM embedding_cache WHERE hash IN (
                    SELECT hash FROM embedding_cache
                    ORDER BY updated_at DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (max_entries,),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def search_vector(
        self,
        query: Sequence[float],
        limit: int = 10,
        sources: Sequence[MemorySource] | None = None,
        *,
        snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS,
    ) -> list[SearchResult]:
        """Nearest chunks to *query*, best-first, scored so higher = more similar.

        Uses the vec0 index when it is available and has the query's
        dimensions; otherwise scans every stored embedding with cosine
        similarity.
        """
        if limit < 1:
            return []
        if self._vec_status.available and self._vector_dims == len(query):
            try:
                return self._search_vector_native(query, limit, sources, snippet_chars)
            except sqlite3.Error as exc:
                logger.warning("Native vector search failed (%s); using fallback", exc)
        return self._search_vector_fallback(query, limit, sources, snippet_chars)

    def _search_vector_native(
        self,
        query: Sequence[float],
        limit: int,
        sources: Sequence[MemorySource] | None,
        snippet_chars: int,
    ) -> list[SearchResult]:
        # vec0 cannot filter by source inside MATCH: widen k until enough
        # rows pass the filter or the index is exhausted.
        allowed = _source_values(sources)
        blob = encode_vector(query)
        k = limit * _FILTER_OVERFETCH if allowed else limit
        while True:
            rows = self._conn.execute(
                f"""
                SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text, v.distance
                FROM (
                    SELECT id, distance FROM {VECTOR_TABLE}
                    WHERE embedding MATCH ? AND k = ?
                ) v
                JOIN chunks c ON c.id = v.id
                ORDER BY v.distance ASC
                """,
                (blob, k),
            ).fetchall()

            results: list[SearchResult] = []
            for row in rows:
                if allowed and row["source"] not in allowed:
                    continue
                score = distance_to_score(row["distance"])
                results.append(_row_to_result(row, score, snippet_chars, vector_score=score))
                if len(results) >= limit:
                    return results
            if len(rows) < k:
                return results
            k *= _FILTER_OVERFETCH

    def _search_vector_fallback(
        self,
        query: Sequence[float],
        limit: int,
        sources: Sequence[MemorySource] | None,
        snippet_chars: int,
    ) -> list[SearchResult]:
        clause, params = _source_clause(sources, column="source")
        rows = self._conn.execute(
            f"""
            SELECT id, path, source, start_line, end_line, text, embedding, embedding_dims
            FROM chunks WHERE embedding IS NOT NULL{clause}
            ORDER BY rowid
            """,
            params,
        ).fetchall()

        dims = len(query)
        kept: list[sqlite3.Row] = []
        vectors: list[list[float]] = []
        for row in rows:
            stored_dims = row["embedding_dims"]
            if stored_dims is not None and stored_dims != dims:
                continue
            try:
                vector = decode_vector(row["embedding"], stored_dims)
            except VectorDecodeError as exc:
                logger.warning("Skipping chunk %s with corrupt embedding: %s", row["id"], exc)
                continue
            if len(vector) != dims:
                continue
            kept.append(row)
            vectors.append(vector)

        if not kept:
            return []

        scores = cosine_scores(query, np.array(vectors))
        order = np.argsort(-scores, kind="stable")[:limit]
        return [
            _row_to_result(kept[i], float(scores[i]), snippet_chars, vector_score=float(scores[i]))
            for i in order
        ]

    # ------------------------------------------------------------------
    # Keyword search
    # ------------------------------------------------------------------

    def search_keyword(
        self,
        query: str,
        limit: int = 10,
        sources: Sequence[MemorySource] | None = None,
        *,
        snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS,
    ) -> list[SearchResult]:
        """Keyword matches for *query*, best-first.

        FTS5 path: bm25 ordering; the i-th match (0-based) scores
        ``1 / (1 + i)``. Fallback path (no FTS5, or the MATCH fails): LIKE
        substring scan with a fixed score.
        """
        if limit < 1 or not query.strip():
            return []
        if self._fts_available:
            fts_query = _fts_query(query)
            if not fts_query:
                return []
            try:
                return self._search_keyword_fts(fts_query, limit, sources, snippet_chars)
            except sqlite3.OperationalError as exc:
                logger.debug("FTS5 match failed for %r (%s); using LIKE", query, exc)
        return self._search_keyword_like(query.strip(), limit, sources, snippet_chars)

    def _search_keyword_fts(
        self,
        fts_query: str,
        limit: int,
        sources: Sequence[MemorySource] | None,
        snippet_chars: int,
    ) -> list[SearchResult]:
        clause, params = _source_clause(sources, column="c.source")
        rows = self._conn.execute(
            f"""
            SELECT c.id, c.path, c.source, c.start_line, c.end_line, c.text,
                   bm25({FTS_TABLE}) AS rank
            FROM {FTS_TABLE}
            JOIN chunks c ON c.rowid = {FTS_TABLE}.rowid
            WHERE {FTS_TABLE} MATCH ?{clause}
            ORDER BY rank
            LIMIT ?
            """,
            (fts_query, *params, limit),
        ).fetchall()
        results: list[SearchResult] = []
        for position, row in enumerate(rows):
            # rank in 1/(1+rank) is the position in the bm25 ordering, not the
            # raw bm25 value: bm25 is negative and its scale depends on the corpus.
            score = 1.0 / (1.0 + max(0, position))
            results.append(_row_to_result(row, score, snippet_chars, text_score=score))
        return results

    def _search_keyword_like(
        self,
        query: str,
        limit: int,
        sources: Sequence[MemorySource] | None,
        snippet_chars: int,
    ) -> list[SearchResult]:
        clause, params = _source_clause(sources, column="source")
        pattern = "%" + re.sub(r"([\\%_])", r"\\\1", query) + "%"
        rows = self._conn.execute(
            f"""
            SELECT id, path, source, start_line, end_line, text
            FROM chunks WHERE text LIKE ? ESCAPE '\\'{clause}
            ORDER BY rowid
            LIMIT ?
            """,
            (pattern, *params, limit),
        ).fetchall()
        return [
            _row_to_result(row, _LIKE_MATCH_SCORE, snippet_chars, text_score=_LIKE_MATCH_SCORE)
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, int]:
        files = self._conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
        chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return {"files": files, "chunks": chunks}

    # ------------------------------------------------------------------
    # Write helpers (no commit; callers wrap them in a transaction)
    # ------------------------------------------------------------------

    def _write_file(self, entry: FileEntry, now: int) -> None:
        self._conn.execute(
            """
            INSERT INTO files (path, source, hash, size, model, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                source = excluded.source,
                hash = excluded.hash,
                size = excluded.size,
                model = excluded.model,
                updated_at = excluded.updated_at
            """,
            (
                entry.path,
                MemorySource(entry.source).value,
                entry.content_hash,
                entry.size_bytes,
                entry.model,
                now,
            ),
        )
        entry.updated_at = now

    def _write_chunk(self, chunk: Chunk, now: int) -> None:
        blob = encode_vector(chunk.embedding) if chunk.embedding is not None else None
        dims = len(chunk.embedding) if chunk.embedding is not None else None
        source = MemorySource(chunk.source).value
        self._conn.execute(
            """
            INSERT INTO chunks (id, path, source, start_line, end_line, text, hash,
                                embedding, embedding_dims, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                path = excluded.path,
                source = excluded.source,
                start_line = excluded.start_line,
                end_line = excluded.end_line,
                text = excluded.text,
                hash = excluded.hash,
                embedding = excluded.embedding,
                embedding_dims = excluded.embedding_dims,
                updated_at = excluded.updated_at
            """,
            (
                chunk.id,
                chunk.path,
                source,
                chunk.start_line,
                chunk.end_line,
                chunk.text,
                chunk.content_hash,
                blob,
                dims,
                now,
            ),
        )

        if self._fts_available:
            rowid = self._conn.execute(
                "SELECT rowid FROM chunks WHERE id = ?", (chunk.id,)
            ).fetchone()[0]
            self._conn.execute(f"DELETE FROM {FTS_TABLE} WHERE rowid = ?", (rowid,))
            self._conn.execute(
                f"INSERT INTO {FTS_TABLE}(rowid, text) VALUES (?, ?)", (rowid, chunk.text)
            )

        if self._vec_status.available and self._vector_dims is not None:
            self._conn.execute(f"DELETE FROM {VECTOR_TABLE} WHERE id = ?", (chunk.id,))
            if dims == self._vector_dims:
                self._conn.execute(
                    f"INSERT INTO {VECTOR_TABLE}(id, embedding) VALUES (?, ?)", (chunk.id, blob)
                )

    def _delete_chunks_for_path(self, path: str) -> None:
        """Delete a path's chunks: vec index, FTS index, then base rows."""
        try:
            self._conn.execute(
                f"DELETE FROM {VECTOR_TABLE} WHERE id IN (SELECT id FROM chunks WHERE path = ?)",
                (path,),
            )
        except sqlite3.OperationalError:
            pass  # no vec table
        try:
            self._conn.execute(
                f"DELETE FROM {FTS_TABLE} WHERE rowid IN (SELECT rowid FROM chunks WHERE path = ?)",
                (path,),
            )
        except sqlite3.OperationalError:
            pass  # no FTS table
        self._conn.execute("DELETE FROM chunks WHERE path = ?", (path,))

    def _table_exists(self, name: str) -> bool:
        row = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ).fetchone()
        return row is not None


# ------------------------------------------------------------------
# Query helpers
# ------------------------------------------------------------------


def _fts_query(query: str) -> str:
    """Build an FTS5 MATCH expression: every word token quoted, OR-joined.

    FTS5 MATCH rejects bare punctuation and treats AND/OR/NOT/NEAR as
    operators, so tokens are extracted and quoted.
    """
    tokens = re.findall(r"\w+", query)
    return " OR ".join(f'"{t}"' for t in tokens)


def _source_values(sources: Sequence[MemorySource] | None) -> set[str]:
    return {MemorySource(s).value for s in sources} if sources else set()


def _source_clause(
    sources: Sequence[MemorySource] | None, column: str
) -> tuple[str, list[str]]:
    values = sorted(_source_values(sources))
    if not values:
        return "", []
    placeholders = ",".join("?" * len(values))
    return f" AND {column} IN ({placeholders})", values


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_file(row: sqlite3.Row) -> FileEntry:
    return FileEntry(
        path=row["path"],
        source=MemorySource(row["source"]),
        content_hash=row["hash"],
        size_bytes=row["size"],
        model=row["model"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    embedding = None
    if row["embedding"] is not None:
        embedding = decode_vector(row["embedding"], row["embedding_dims"])
    return Chunk(
        id=row["id"],
        path=row["path"],
        source=MemorySource(row["source"]),
        start_line=row["start_line"],
        end_line=row["end_line"],
        text=row["text"],
        content_hash=row["hash"],
        embedding=embedding,
    )


def _row_to_result(
    row: sqlite3.Row,
    score: float,
    snippet_chars: int,
    *,
    vector_score: float | None = None,
    text_score: float | None = None,
) -> SearchResult:
    return SearchResult(
        id=row["id"],
        path=row["path"],
        source=MemorySource(row["source"]),
        start_line=row["start_line"],
        end_line=row["end_line"],
        snippet=row["text"][:snippet_chars],
        score=score,
        vector_score=vector_score,
        text_score=text_score,
    )
