"""Content-hash keyed embedding cache in front of an EmbeddingProvider."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from recall.db.repository import Repository
from recall.ingest.base import hash_text
from recall.ingest.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingCache:
    """Embed texts, reusing stored vectors for text seen before.

    Entries are keyed by ``key_for(text)``. Hits never reach the provider.
    Misses are sent to the provider in a single call and persisted before
    ``embed`` returns. Provider errors
    propagate unchanged; nothing is cached for a failed call.

    Args:
        repo: Open Repository holding the ``embedding_cache`` table.
        provider: Backend used for cache misses.
        enabled: False bypasses the cache entirely (every text is embedded).
        max_entries: Keep at most this many entries, evicting the least
            recently written. None means unbounded.
    """

    def __init__(
        self,
        repo: Repository,
        provider: EmbeddingProvider,
        *,
        enabled: bool = True,
        max_entries: int | None = None,
    ) -> None:
        self._repo = repo
        self.provider = provider
        self.enabled = enabled
        self.max_entries = max_entries

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if not self.enabled:
            return await self.provider.embed(texts)

        hashes = [self.key_for(t) for t in texts]
        vectors: list[list[float] | None] = [self._repo.get_cached_embedding(h) for h in hashes]

        # Distinct missing texts, in first-seen order.
        missing: dict[str, int] = {}
        for i, vector in enumerate(vectors):
            if vector is None and hashes[i] not in missing:
                missing[hashes[i]] = i

        if missing:
            logger.debug("Embedding cache: %d hit(s), %d miss(es)",
                         len(texts) - len(missing), len(missing))
            fresh = await self.provider.embed([texts[i] for i in missing.values()])
            by_hash = dict(zip(missing, fresh))
            self._repo.cache_embeddings(by_hash.items())
            if self.max_entries is not None:
                pruned = self._repo.prune_embedding_cache(self.max_entries)
                if pruned:
                    logger.debug("Pruned %d embedding cache entries", pruned)
            vectors = [v if v is not None else by_hash[h] for v, h in zip(vectors, hashes)]

        return [v for v in vectors if v is not None]

    def key_for(self, text: str) -> str:
        """Cache key: content hash of *text* namespaced by provider and model.

        Vectors from different models are not interchangeable, even when
        their dimensions agree.
        """
        return hash_text(f"{self.provider.id}/{self.provider.model}\n{text}")

    def count(self) -> int:
        return self._repo.count_cached_embeddings()
