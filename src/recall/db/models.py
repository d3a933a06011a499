"""Domain models for the recall database layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MemorySource(str, Enum):
    """Where a memory file comes from."""

    USER = "user"
    AGENT = "agent"
    WORKSPACE = "workspace"


@dataclass
class FileEntry:
    path: str
    source: MemorySource
    content_hash: str
    size_bytes: int
    model: str | None = None  # "provider/model" the chunks were embedded with
    updated_at: int | None = None  # epoch millis, set by the repository on write


@dataclass
class Chunk:
    id: str
    path: str
    source: MemorySource
    start_line: int
    end_line: int
    text: str
    content_hash: str
    embedding: list[float] | None = None

    @staticmethod
    def make_id(path: str, start_line: int, end_line: int) -> str:
        """Deterministic chunk id: re-indexing the same region upserts, never duplicates."""
        return f"{path}:{start_line}-{end_line}"


@dataclass
class EmbeddingCacheEntry:
    text_hash: str
    vector: list[float]
    dimensions: int
    updated_at: int | None = None


@dataclass
class SearchResult:
    """A ranked passage. ``score`` is higher-is-better on every search path."""

    id: str
    path: str
    source: MemorySource
    start_line: int
    end_line: int
    snippet: str
    score: float
    vector_score: float | None = None
    text_score: float | None = None


@dataclass(frozen=True)
class VecStatus:
    """Outcome of the one-time sqlite-vec capability check."""

    available: bool
    reason: str
