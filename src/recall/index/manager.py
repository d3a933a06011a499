"""Memory index manager: keeps the store in step with the memory files and answers queries.

Sync pipeline per file:
  scan → hash diff → chunk → cache-backed embed (timeout-bound) → replace_file
then every indexed path missing from the scan is deleted.

Query pipeline:
  embed query once → vector candidates + keyword candidates → hybrid merge.

All writes happen inside sync(), which is serialized by one asyncio.Lock.
Storage calls are synchronous; the only awaits are embedding calls, so
queries interleave with a running sync.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from recall.config import RecallConfig, load_config
from recall.db.models import Chunk, FileEntry, MemorySource, SearchResult, VecStatus
from recall.db.repository import Repository
from recall.index.watcher import ChangeDebouncer, DirectoryWatcher
from recall.ingest.base import hash_text
from recall.ingest.embedding import EmbeddingProvider, KeyGetter, create_embedding_provider
from recall.ingest.embedding_cache import EmbeddingCache
from recall.ingest.markdown import MarkdownChunker
from recall.ingest.scanner import FileScanner, MemoryFileScanner, ScannedFile, ScanRoot
from recall.rag.hybrid import merge_hybrid_results, rank_vector_only

logger = logging.getLogger(__name__)


@dataclass
class IndexStatus:
    """Snapshot of the index for ``recall status``."""

    files: int
    chunks: int
    dirty: bool
    provider: str
    model: str
    vector_available: bool
    vector_reason: str
    vector_dims: int | None
    fts_available: bool
    cache_entries: int
    cache_enabled: bool
    db_path: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


@dataclass
class SyncReport:
    """Counts from one sync pass."""

    scanned: int = 0
    indexed: int = 0
    unchanged: int = 0
    removed: int = 0
    skipped: int = 0
    failed: list[str] = field(default_factory=list)


class SyncError(RuntimeError):
    """One or more files failed to index during a sync pass.

    Attributes:
        failures: Stored path → the exception raised while indexing it.
        report: Counts for the pass, including the files that did succeed.
    """

    def __init__(self, failures: Mapping[str, BaseException], report: SyncReport) -> None:
        self.failures = dict(failures)
        self.report = report
        paths = ", ".join(sorted(self.failures))
        super().__init__(f"{len(self.failures)} file(s) failed to index: {paths}")


def scan_roots_from_config(cfg: RecallConfig, workspace_dir: Path) -> list[ScanRoot]:
    """Resolve configured roots against *workspace_dir* (default: the workspace itself)."""
    if not cfg.roots:
        return [ScanRoot(workspace_dir, MemorySource.AGENT)]
    roots: list[ScanRoot] = []
    for root in cfg.roots:
        path = Path(root.path).expanduser()
        if not path.is_absolute():
            path = workspace_dir / path
        if root.patterns:
            roots.append(ScanRoot(path, MemorySource(root.source), tuple(root.patterns)))
        else:
            roots.append(ScanRoot(path, MemorySource(root.source)))
    return roots


class MemoryIndexManager:
    """Owns one store, one embedding provider and one scanner for a workspace/agent.

    Use MemoryIndexManager.create() to build one from configuration.
    """

    def __init__(
        self,
        repo: Repository,
        provider: EmbeddingProvider,
        scanner: FileScanner,
        *,
        config: RecallConfig | None = None,
        workspace_dir: Path | None = None,
        db_path: Path | None = None,
    ) -> None:
        self.config = config or RecallConfig()
        self.workspace_dir = (workspace_dir or Path.cwd()).resolve()
        self.db_path = db_path
        self.provider = provider
        self.dirty = True
        self._repo = repo
        self._scanner = scanner
        self._chunker = MarkdownChunker(self.config.chunking.tokens, self.config.chunking.overlap)
        self._cache = EmbeddingCache(
            repo,
            provider,
            enabled=self.config.cache.enabled,
            max_entries=self.config.cache.max_entries,
        )
        self._lock = asyncio.Lock()
        self._debouncer: ChangeDebouncer | None = None
        self._watcher: DirectoryWatcher | None = None
        self._closed = False

    @classmethod
    def create(
        cls,
        workspace_dir: Path | str,
        agent_id: str = "default",
        config: RecallConfig | None = None,
        provider: EmbeddingProvider | None = None,
        scanner: FileScanner | None = None,
        key_getters: Mapping[str, KeyGetter] | None = None,
    ) -> MemoryIndexManager:
        """Open the store for *agent_id* in *workspace_dir* and wire up its collaborators.

        Raises:
            ConfigError: If the workspace configuration is invalid.
            RuntimeError: If no embedding provider has an API key.
        """
        workspace = Path(workspace_dir).expanduser().resolve()
        cfg = config if config is not None else load_config(workspace)
        if provider is None:
            provider = create_embedding_provider(
                cfg.embedding.provider, cfg.embedding.model, key_getters=key_getters
            )
            if provider.fallback_from:
                logger.info(
                    "Embedding provider %s unavailable (%s); using %s",
                    provider.fallback_from,
                    provider.fallback_reason,
                    provider.id,
                )
        if scanner is None:
            scanner = MemoryFileScanner(scan_roots_from_config(cfg, workspace), workspace)

        db_path = cfg.store_path(workspace, agent_id)
        repo = Repository.open(db_path, vector=cfg.vector.enabled)
        if provider.dimensions and repo.ensure_vector_table(provider.dimensions):
            repo.rebuild_vector_index()

        logger.debug("Opened memory index %s (provider=%s/%s)", db_path, provider.id, provider.model)
        return cls(
            repo,
            provider,
            scanner,
            config=cfg,
            workspace_dir=workspace,
            db_path=db_path,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    @property
    def scan_roots(self) -> list[ScanRoot]:
        return list(self._scanner.roots)

    @property
    def embedding_model(self) -> str:
        """``provider/model`` recorded on every file indexed by this manager."""
        return f"{self.provider.id}/{self.provider.model}"

    def mark_dirty(self) -> None:
        self.dirty = True

    async def sync(self) -> SyncReport:
        """Bring the index in line with the memory files on disk.

        Raises:
            SyncError: If any file failed to index. Other files are still
                indexed and stale files still removed; the index stays dirty.
        """
        async with self._lock:
            return await self._sync_locked()

    async def _sync_locked(self) -> SyncReport:
        report = SyncReport()
        failures: dict[str, BaseException] = {}
        seen: set[str] = set()

        embedding_model = self.embedding_model
        scanned_files = await asyncio.to_thread(self._scanner.scan)

        for scanned in scanned_files:
            report.scanned += 1
            seen.add(scanned.path)
            if scanned.content is None:
                report.skipped += 1
                continue

            content_hash = hash_text(scanned.content)
            existing = self._repo.get_file(scanned.path)
            if (
                existing is not None
                and existing.content_hash == content_hash
                and existing.source == scanned.source
                and existing.model == embedding_model
            ):
                report.unchanged += 1
                continue
            if existing is not None and existing.model != embedding_model:
                logger.info("Re-embedding %s: model %s -> %s",
                            scanned.path, existing.model, embedding_model)

            try:
                await self._index_file(scanned, content_hash, embedding_model)
            except Exception as exc:  # collected and re-raised as SyncError
                logger.warning("Failed to index %s: %s", scanned.path, exc)
                failures[scanned.path] = exc
                report.failed.append(scanned.path)
                continue
            report.indexed += 1
            logger.debug("Indexed %s", scanned.path)

        for path in self._repo.get_all_file_paths():
            if path not in seen:
                self._repo.delete_file(path)
                report.removed += 1
                logger.info("Removed stale memory file %s", path)

        if failures:
            self.dirty = True
            raise SyncError(failures, report)
        self.dirty = False
        logger.info(
            "Sync complete: %d indexed, %d unchanged, %d removed",
            report.indexed,
            report.unchanged,
            report.removed,
        )
        return report

    async def _index_file(self, scanned: ScannedFile, content_hash: str, model: str) -> None:
        raw_chunks = self._chunker.chunk(scanned.content or "")
        vectors = await self._embed([raw.text for raw in raw_chunks])
        if vectors:
            self._ensure_vector_dims(len(vectors[0]))

        chunks = [
            Chunk(
                id=Chunk.make_id(scanned.path, raw.start_line, raw.end_line),
                path=scanned.path,
                source=scanned.source,
                start_line=raw.start_line,
                end_line=raw.end_line,
                text=raw.text,
                content_hash=raw.content_hash,
                embedding=vector,
            )
            for raw, vector in zip(raw_chunks, vectors)
        ]
        entry = FileEntry(
            path=scanned.path,
            source=scanned.source,
            content_hash=content_hash,
            size_bytes=scanned.size,
            model=model,
        )
        self._repo.replace_file(entry, chunks)

    async def _embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        return await asyncio.wait_for(
            self._cache.embed(texts), timeout=self.config.sync.embed_timeout_s
        )

    def _ensure_vector_dims(self, dims: int) -> None:
        if not self._repo.is_vector_available() or self._repo.vector_dims == dims:
            return
        if self._repo.ensure_vector_table(dims):
            indexed = self._repo.rebuild_vector_index()
            logger.info("Vector index rebuilt for %d dimensions (%d chunks)", dims, indexed)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
        sources: Sequence[MemorySource] | None = None,
    ) -> list[SearchResult]:
        """Hybrid search over indexed memory, best-first.

        Provider errors while embedding the query propagate.
        """
        if not query.strip():
            return []
        # A sync already in progress has committed whole files only; query those.
        if self.dirty and self.config.sync.on_search and not self._lock.locked():
            try:
                await self.sync()
            except SyncError as exc:
                logger.warning("Searching a partially synced index: %s", exc)

        if self._repo.get_stats()["chunks"] == 0:
            return []

        qcfg = self.config.query
        limit = max_results if max_results is not None else qcfg.max_results
        threshold = min_score if min_score is not None else qcfg.min_score
        candidates = max(1, limit * qcfg.hybrid.candidate_multiplier)

        query_vectors = await asyncio.wait_for(
            self.provider.embed([query]), timeout=self.config.sync.embed_timeout_s
        )
        query_vector = query_vectors[0] if query_vectors else []

        vector_results: list[SearchResult] = []
        if any(query_vector):
            vector_results = self._repo.search_vector(
                query_vector, candidates, sources, snippet_chars=qcfg.max_snippet_chars
            )

        if not qcfg.hybrid.enabled:
            return rank_vector_only(
                vector_results,
                min_score=threshold,
                limit=limit,
                snippet_chars=qcfg.max_snippet_chars,
            )

        keyword_results = self._repo.search_keyword(
            query, candidates, sources, snippet_chars=qcfg.max_snippet_chars
        )
        return merge_hybrid_results(
            vector_results,
            keyword_results,
            vector_weight=qcfg.hybrid.vector_weight,
            text_weight=qcfg.hybrid.text_weight,
            min_score=threshold,
            limit=limit,
            snippet_chars=qcfg.max_snippet_chars,
        )

    def read_file(
        self, rel_path: str, from_line: int | None = None, lines: int | None = None
    ) -> str:
        """Return the text of a memory file, optionally a window of lines.

        Args:
            rel_path: Path as returned in SearchResult.path (workspace-relative
                or absolute).
            from_line: 1-based first line to return.
            lines: Number of lines to return.

        Raises:
            ValueError: If the path is not a memory file under a scan root.
        """
        path = Path(rel_path).expanduser()
        if not path.is_absolute():
            path = self.workspace_dir / path
        path = path.resolve()
        if not self._scanner.is_memory_file(path):
            raise ValueError(f"Not a memory file: {rel_path}")

        text = path.read_text(encoding="utf-8")
        if from_line is None and lines is None:
            return text
        all_lines = text.split("\n")
        start = max(1, from_line or 1) - 1
        end = start + lines if lines is not None else len(all_lines)
        return "\n".join(all_lines[start:max(start, end)])

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start_watching(self) -> bool:
        """Watch the scan roots and resync after each burst of changes.

        Must be called from a running event loop. Returns False when
        watching is disabled by ``sync.watch``.
        """
        if not self.config.sync.watch:
            return False
        if self._watcher is not None:
            return True
        self._debouncer = ChangeDebouncer(
            self.config.sync.watch_debounce_ms / 1000.0, self._on_change
        )
        self._watcher = DirectoryWatcher(self._scanner.roots, self._debouncer)
        self._watcher.start()
        return True

    async def _on_change(self, scope: str) -> None:
        logger.debug("Memory files changed under %s", scope)
        self.dirty = True
        try:
            await self.sync()
        except SyncError as exc:
            logger.warning("Resync after change left failures: %s", exc)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def is_vector_available(self) -> bool:
        return self._repo.is_vector_available()

    def get_vector_status(self) -> VecStatus:
        return self._repo.get_vector_status()

    def get_stats(self) -> dict[str, int]:
        return self._repo.get_stats()

    def status(self) -> IndexStatus:
        stats = self._repo.get_stats()
        vec = self._repo.get_vector_status()
        return IndexStatus(
            files=stats["files"],
            chunks=stats["chunks"],
            dirty=self.dirty,
            provider=self.provider.id,
            model=self.provider.model,
            vector_available=vec.available,
            vector_reason=vec.reason,
            vector_dims=self._repo.vector_dims,
            fts_available=self._repo.is_fts_available(),
            cache_entries=self._cache.count(),
            cache_enabled=self._cache.enabled,
            db_path=str(self.db_path) if self.db_path else "",
            fallback_from=self.provider.fallback_from,
            fallback_reason=self.provider.fallback_reason,
        )

    def close(self) -> None:
        """Stop watching, cancel pending resyncs and close the store. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._debouncer is not None:
            self._debouncer.close()
        if self._watcher is not None:
            self._watcher.stop()
        self._repo.close()
