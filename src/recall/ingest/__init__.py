"""recall ingest pipeline: chunking, memory file scanning, embeddings."""

from recall.ingest.base import BaseChunker, RawChunk, estimate_tokens, hash_text
from recall.ingest.embedding import (
    EmbeddingProvider,
    LiteLLMEmbeddingProvider,
    create_embedding_provider,
)
from recall.ingest.embedding_cache import EmbeddingCache
from recall.ingest.markdown import MarkdownChunker
from recall.ingest.scanner import FileScanner, MemoryFileScanner, ScannedFile, ScanRoot

__all__ = [
    "BaseChunker",
    "RawChunk",
    "estimate_tokens",
    "hash_text",
    "EmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "create_embedding_provider",
    "EmbeddingCache",
    "MarkdownChunker",
    "FileScanner",
    "MemoryFileScanner",
    "ScannedFile",
    "ScanRoot",
]
