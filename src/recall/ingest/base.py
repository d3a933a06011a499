"""Base chunker interface and token/hash helpers shared by the ingest pipeline."""

from __future__ import annotations

import hashlib
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from recall.config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_TOKENS


def estimate_tokens(text: str) -> int:
    """Approximate token count: the larger of the word count and chars / 4.

    Fast, dependency-free approximation; blank text counts as 0.
    """
    if not text.strip():
        return 0
    return max(len(text.split()), math.ceil(len(text) / 4))


def hash_text(text: str) -> str:
    """Content hash used for change detection and the embedding cache key."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass
class RawChunk:
    """A passage of a file before it is bound to a path and embedded.

    Line numbers are 1-based and inclusive.
    """

    start_line: int
    end_line: int
    text: str

    @property
    def content_hash(self) -> str:
        return hash_text(self.text)


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    ``chunk_tokens`` and ``overlap_tokens`` are budgets in estimated tokens
    (see estimate_tokens()); no external tokenizer is required.
    """

    def __init__(
        self,
        chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
        overlap_tokens: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_tokens < 1:
            raise ValueError("chunk_tokens must be >= 1")
        if not 0 <= overlap_tokens < chunk_tokens:
            raise ValueError("overlap_tokens must be in [0, chunk_tokens)")
        self.chunk_tokens = chunk_tokens
        self.overlap_tokens = overlap_tokens

    @abstractmethod
    def chunk(self, content: str) -> list[RawChunk]:
        """Split *content* into ordered, possibly overlapping RawChunks."""

    @staticmethod
    def line_cost(line: str) -> int:
        """Token cost of one line; every line, blank or not, costs at least 1."""
        return max(1, estimate_tokens(line))
