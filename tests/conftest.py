"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping, Sequence

import pytest

from recall.db.connection import Database
from recall.db.models import VecStatus
from recall.db.repository import Repository
from recall.db.schema import initialize
from recall.ingest.embedding import EmbeddingProvider


class FakeProvider(EmbeddingProvider):
    """Deterministic bag-of-words embeddings; records every call.

    Each word is hashed into one of *dims* buckets, so texts that share words
    have positive cosine similarity. Explicit *vectors* override per text.
    """

    def __init__(
        self,
        dims: int = 8,
        vectors: Mapping[str, Sequence[float]] | None = None,
        fail: BaseException | None = None,
    ) -> None:
        self.id = "fake"
        self.model = f"fake-{dims}"
        self.dimensions = dims
        self.vectors = dict(vectors or {})
        self.fail = fail
        self.calls: list[list[str]] = []

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail is not None:
            raise self.fail
        return [self._vector(t) for t in texts]

    def _vector(self, text: str) -> list[float]:
        if text in self.vectors:
            return [float(x) for x in self.vectors[text]]
        vec = [0.0] * self.dimensions
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimensions
            vec[bucket] += 1.0
        return vec


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "memory.sqlite")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    """Repository on tmp_db using whatever sqlite-vec support is installed."""
    return Repository(tmp_db)


@pytest.fixture
def fallback_repo(tmp_db):
    """Repository forced onto the in-process cosine fallback."""
    return Repository(tmp_db, VecStatus(False, "disabled for test"))


@pytest.fixture
def make_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider
