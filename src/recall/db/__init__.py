"""recall database layer."""

from recall.db.connection import Database, detect_vec_extension
from recall.db.migrations import MIGRATIONS, run_migrations
from recall.db.repository import Repository
from recall.db.schema import initialize
from recall.db.vectors import VectorDecodeError, decode_vector, encode_vector, ensure_vec_table

__all__ = [
    "Database",
    "detect_vec_extension",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Repository",
    "ensure_vec_table",
    "encode_vector",
    "decode_vector",
    "VectorDecodeError",
]
