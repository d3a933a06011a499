"""Tests for MemoryIndexManager: sync, search, read_file and status."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pytest

from recall.config import RecallConfig, RootCfg
from recall.db.models import MemorySource
from recall.index.manager import MemoryIndexManager, SyncError, scan_roots_from_config


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    _write(ws / "MEMORY.md", "# Preferences\nUser likes green tea in the morning.\n")
    _write(ws / "memory" / "projects.md", "# Projects\nThe lighthouse project ships on Friday.\n")
    _write(ws / "README.md", "Not memory.\n")
    return ws


@pytest.fixture
def open_manager(make_provider):
    managers: list[MemoryIndexManager] = []

    def _open(ws: Path, provider=None, config: RecallConfig | None = None, **kwargs):
        manager = MemoryIndexManager.create(
            ws,
            config=config or RecallConfig(),
            provider=provider or make_provider(dims=64),
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield _open
    for m in managers:
        m.close()


# ------------------------------------------------------------------
# Empty store
# ------------------------------------------------------------------


def test_empty_store_search_returns_empty(tmp_path, open_manager, make_provider):
    provider = make_provider()
    manager = open_manager(tmp_path, provider=provider)
    assert manager.get_stats() == {"files": 0, "chunks": 0}
    assert asyncio.run(manager.search("anything")) == []
    assert provider.calls == []


def test_blank_query_returns_empty(workspace, open_manager):
    manager = open_manager(workspace)
    assert asyncio.run(manager.search("   ")) == []


def test_store_created_under_workspace(workspace, open_manager):
    manager = open_manager(workspace, agent_id="helper")
    assert manager.db_path == workspace.resolve() / ".recall" / "memory" / "helper.sqlite"
    assert manager.db_path.exists()


# ------------------------------------------------------------------
# Sync
# ------------------------------------------------------------------


def test_sync_indexes_memory_files(workspace, open_manager):
    manager = open_manager(workspace)
    report = asyncio.run(manager.sync())
    assert report.indexed == 2
    assert manager.dirty is False
    assert manager.get_stats()["files"] == 2
    assert sorted(manager._repo.get_all_file_paths()) == ["MEMORY.md", "memory/projects.md"]


def test_resync_skips_unchanged_files(workspace, open_manager, make_provider):
    provider = make_provider(dims=64)
    manager = open_manager(workspace, provider=provider)
    asyncio.run(manager.sync())
    calls = len(provider.calls)

    report = asyncio.run(manager.sync())
    assert report.unchanged == 2
    assert report.indexed == 0
    assert len(provider.calls) == calls


def test_changed_file_is_reindexed(workspace, open_manager):
    manager = open_manager(workspace)
    asyncio.run(manager.sync())
    _write(workspace / "MEMORY.md", "# Preferences\nUser switched to coffee.\nNo sugar.\n")

    report = asyncio.run(manager.sync())
    assert report.indexed == 1
    chunks = manager._repo.get_chunks_by_path("MEMORY.md")
    assert all("tea" not in c.text for c in chunks)
    assert any("coffee" in c.text for c in chunks)


def test_deleted_file_is_removed(workspace, open_manager):
    manager = open_manager(workspace)
    asyncio.run(manager.sync())
    (workspace / "memory" / "projects.md").unlink()

    report = asyncio.run(manager.sync())
    assert report.removed == 1
    assert manager._repo.get_all_file_paths() == ["MEMORY.md"]
    assert manager._repo.get_chunks_by_path("memory/projects.md") == []


def test_unreadable_file_keeps_existing_rows(workspace, open_manager):
    manager = open_manager(workspace)
    asyncio.run(manager.sync())
    (workspace / "memory" / "projects.md").write_bytes(b"\xff\xfe broken")

    report = asyncio.run(manager.sync())
    assert report.skipped == 1
    assert report.removed == 0
    assert "memory/projects.md" in manager._repo.get_all_file_paths()


def test_provider_failure_for_one_file_raises_sync_error(workspace, open_manager, make_provider):
    class SelectiveProvider(type(make_provider())):
        async def embed(self, texts):
            if any("lighthouse" in t for t in texts):
                raise RuntimeError("quota exceeded")
            return await super().embed(texts)

    manager = open_manager(workspace, provider=SelectiveProvider(dims=64))
    with pytest.raises(SyncError) as excinfo:
        asyncio.run(manager.sync())

    err = excinfo.value
    assert list(err.failures) == ["memory/projects.md"]
    assert isinstance(err.failures["memory/projects.md"], RuntimeError)
    assert err.report.indexed == 1
    assert manager.dirty is True
    assert manager._repo.get_all_file_paths() == ["MEMORY.md"]


def test_embed_timeout_counts_as_failure(workspace, open_manager, make_provider):
    class SlowProvider(type(make_provider())):
        async def embed(self, texts):
            await asyncio.sleep(1)
            return await super().embed(texts)

    config = RecallConfig()
    config.sync.embed_timeout_s = 0.01
    manager = open_manager(workspace, provider=SlowProvider(dims=8), config=config)
    with pytest.raises(SyncError) as excinfo:
        asyncio.run(manager.sync())
    assert len(excinfo.value.failures) == 2
    assert manager.get_stats() == {"files": 0, "chunks": 0}


def test_embedding_model_change_reindexes_everything(workspace, open_manager, make_provider):
    first = open_manager(workspace, provider=make_provider(dims=4))
    asyncio.run(first.sync())
    first.close()

    second = open_manager(workspace, provider=make_provider(dims=8))
    report = asyncio.run(second.sync())
    assert report.indexed == 2
    chunks = second._repo.get_chunks_by_path("MEMORY.md")
    assert all(len(c.embedding) == 8 for c in chunks)

    results = asyncio.run(second.search("green tea", min_score=0.0))
    assert results[0].path == "MEMORY.md"
    assert results[0].vector_score is not None


def test_model_change_after_partial_sync_reembeds_indexed_files(
    workspace, open_manager, make_provider
):
    class SelectiveProvider(type(make_provider())):
        async def embed(self, texts):
            if any("lighthouse" in t for t in texts):
                raise RuntimeError("quota exceeded")
            return await super().embed(texts)

    first = open_manager(workspace, provider=SelectiveProvider(dims=8))
    with pytest.raises(SyncError):
        asyncio.run(first.sync())
    assert first._repo.get_file("MEMORY.md").model == "fake/fake-8"
    first.close()

    second = open_manager(workspace, provider=make_provider(dims=16))
    report = asyncio.run(second.sync())
    assert report.indexed == 2
    assert report.unchanged == 0
    assert second._repo.get_file("MEMORY.md").model == "fake/fake-16"
    chunks = second._repo.get_chunks_by_path("MEMORY.md")
    assert all(len(c.embedding) == 16 for c in chunks)


def test_scan_runs_off_the_event_loop_thread(workspace, open_manager):
    manager = open_manager(workspace)
    scan = manager._scanner.scan
    threads: list[int] = []

    def recording_scan():
        threads.append(threading.get_ident())
        return scan()

    manager._scanner.scan = recording_scan
    asyncio.run(manager.sync())
    assert threads and threads[0] != threading.get_ident()


# ------------------------------------------------------------------
# Search
# ------------------------------------------------------------------


def test_search_during_running_sync_does_not_wait(workspace, open_manager, make_provider):
    class SlowProjectsProvider(type(make_provider())):
        async def embed(self, texts):
            if any("lighthouse" in t for t in texts):
                await asyncio.sleep(1.5)
            return await super().embed(texts)

    manager = open_manager(workspace, provider=SlowProjectsProvider(dims=64))

    async def run():
        sync_task = asyncio.create_task(manager.sync())
        await asyncio.sleep(0.1)
        started = time.monotonic()
        results = await manager.search("green tea", min_score=0.0)
        elapsed = time.monotonic() - started
        assert not sync_task.done()
        await sync_task
        return results, elapsed

    results, elapsed = asyncio.run(run())
    assert elapsed < 0.5
    assert results and results[0].path == "MEMORY.md"
    assert manager.dirty is False


def test_search_syncs_dirty_index_first(workspace, open_manager):
    manager = open_manager(workspace)
    results = asyncio.run(manager.search("green tea"))
    assert manager.dirty is False
    assert results
    assert results[0].path == "MEMORY.md"
    assert results[0].start_line == 1
    assert results[0].score <= 1.0


def test_search_respects_max_results_and_sources(workspace, open_manager):
    config = RecallConfig(roots=[
        RootCfg(path=".", source="agent", patterns=["MEMORY.md"]),
        RootCfg(path="memory", source="user", patterns=["*.md"]),
    ])
    manager = open_manager(workspace, config=config)
    results = asyncio.run(manager.search("project", min_score=0.0, sources=[MemorySource.USER]))
    assert results
    assert all(r.source is MemorySource.USER for r in results)

    limited = asyncio.run(manager.search("the", max_results=1, min_score=0.0))
    assert len(limited) == 1


def test_search_with_hybrid_disabled_uses_vector_scores(workspace, open_manager):
    config = RecallConfig()
    config.query.hybrid.enabled = False
    manager = open_manager(workspace, config=config)
    results = asyncio.run(manager.search("green tea", min_score=0.0))
    assert results[0].path == "MEMORY.md"
    assert results[0].text_score is None


def test_search_propagates_query_embedding_errors(workspace, open_manager, make_provider):
    provider = make_provider(dims=64)
    manager = open_manager(workspace, provider=provider)
    asyncio.run(manager.sync())
    provider.fail = RuntimeError("network down")
    with pytest.raises(RuntimeError, match="network down"):
        asyncio.run(manager.search("tea"))


def test_zero_query_vector_uses_keywords_only(workspace, open_manager, make_provider):
    provider = make_provider(dims=64, vectors={"lighthouse": [0.0] * 64})
    manager = open_manager(workspace, provider=provider)
    results = asyncio.run(manager.search("lighthouse", min_score=0.0))
    assert results[0].path == "memory/projects.md"
    assert results[0].vector_score is None
    assert results[0].score == pytest.approx(0.3)


# ------------------------------------------------------------------
# read_file
# ------------------------------------------------------------------


def test_read_file_whole(workspace, open_manager):
    manager = open_manager(workspace)
    assert manager.read_file("MEMORY.md").startswith("# Preferences")


def test_read_file_line_window(workspace, open_manager):
    _write(workspace / "memory" / "log.md", "one\ntwo\nthree\nfour\n")
    manager = open_manager(workspace)
    assert manager.read_file("memory/log.md", from_line=2, lines=2) == "two\nthree"
    assert manager.read_file("memory/log.md", from_line=3) == "three\nfour\n"


def test_read_file_rejects_non_memory_paths(workspace, open_manager, tmp_path):
    _write(tmp_path / "secret.md", "nope")
    manager = open_manager(workspace)
    with pytest.raises(ValueError):
        manager.read_file("README.md")
    with pytest.raises(ValueError):
        manager.read_file("../secret.md")
    with pytest.raises(ValueError):
        manager.read_file(str(tmp_path / "secret.md"))


# ------------------------------------------------------------------
# Status / roots / lifecycle
# ------------------------------------------------------------------


def test_status_reports_counts_and_provider(workspace, open_manager):
    manager = open_manager(workspace)
    asyncio.run(manager.sync())
    st = manager.status()
    assert st.files == 2
    assert st.chunks >= 2
    assert st.dirty is False
    assert st.provider == "fake"
    assert st.cache_enabled is True
    assert st.cache_entries >= 2
    assert st.vector_available == manager.is_vector_available()
    assert st.vector_reason == manager.get_vector_status().reason


def test_scan_roots_default_to_workspace(tmp_path):
    [root] = scan_roots_from_config(RecallConfig(), tmp_path)
    assert root.path == tmp_path
    assert root.source is MemorySource.AGENT


def test_scan_roots_resolve_relative_paths(tmp_path):
    cfg = RecallConfig(roots=[RootCfg(path="notes", source="user", patterns=["*.md"])])
    [root] = scan_roots_from_config(cfg, tmp_path)
    assert root.path == tmp_path / "notes"
    assert root.source is MemorySource.USER
    assert root.patterns == ("*.md",)


def test_start_watching_disabled_by_config(workspace, open_manager):
    config = RecallConfig()
    config.sync.watch = False
    manager = open_manager(workspace, config=config)
    assert manager.start_watching() is False


def test_close_is_idempotent(workspace, open_manager):
    manager = open_manager(workspace)
    manager.close()
    manager.close()
