"""Vector codec, similarity math and the sqlite-vec index table.

Embeddings are stored as little-endian float32 arrays, both inline in
``chunks.embedding`` and in ``embedding_cache``. The same bytes are passed to
sqlite-vec as MATCH arguments.

The vec table is NOT migration-managed; use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence

import numpy as np

VECTOR_TABLE = "chunks_vec"

_FLOAT32_LE = np.dtype("<f4")
_FLOAT_BYTES = _FLOAT32_LE.itemsize


class VectorDecodeError(ValueError):
    """Raised when a stored embedding blob does not match its declared shape."""


# ------------------------------------------------------------------
# Codec
# ------------------------------------------------------------------


def encode_vector(vector: Sequence[float]) -> bytes:
    """Encode *vector* as a little-endian float32 blob."""
    return np.asarray(vector, dtype=_FLOAT32_LE).tobytes()


def decode_vector(blob: bytes, dims: int | None = None) -> list[float]:
    """Decode a little-endian float32 blob back into a list of floats.

    Args:
        blob: Bytes produced by encode_vector().
        dims: Expected dimensionality. When given, the blob must be exactly
            ``dims * 4`` bytes long.

    Raises:
        VectorDecodeError: If the byte length is not a whole number of floats
            or disagrees with *dims*.
    """
    size = len(blob)
    if size % _FLOAT_BYTES:
        raise VectorDecodeError(
            f"embedding blob of {size} bytes is not a multiple of {_FLOAT_BYTES}"
        )
    if dims is not None and size != dims * _FLOAT_BYTES:
        raise VectorDecodeError(
            f"embedding blob of {size} bytes does not hold {dims} float32 values"
        )
    return np.frombuffer(blob, dtype=_FLOAT32_LE).tolist()


# ------------------------------------------------------------------
# Similarity
# ------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of *a* and *b*; 0.0 when either norm is 0 or lengths differ."""
    if len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Row-wise cosine similarity of every row in *matrix* against *query*.

    Rows (or a query) with zero norm score 0.0.
    """
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    norms = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    scores = np.zeros(len(m), dtype=np.float64)
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return scores


def distance_to_score(distance: float) -> float:
    """Map a non-negative KNN distance to a (0, 1] similarity score."""
    return 1.0 / (1.0 + max(0.0, distance))


# ------------------------------------------------------------------
# vec0 table
# ------------------------------------------------------------------


def vec_table_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (VECTOR_TABLE,)
    ).fetchone()
    return row is not None


def ensure_vec_table(
    conn: sqlite3.Connection, dimensions: int, current_dims: int | None = None
) -> bool:
    """Create the vec0 index table for *dimensions*, rebuilding it on a change.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).
        current_dims: Dimensions the existing table was created with, if known.

    Returns:
        True if the table was (re)created and is now empty, False if an
        existing table with the same dimensions was kept.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    exists = vec_table_exists(conn)
    if exists and current_dims == dimensions:
        return False

    if exists:
        conn.execute(f"DROP TABLE {VECTOR_TABLE}")
    conn.execute(
        f"CREATE VIRTUAL TABLE {VECTOR_TABLE} USING vec0("
        f"id TEXT PRIMARY KEY, embedding float[{dimensions}])"
    )
    conn.commit()
    return True
