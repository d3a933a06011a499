"""Tests for ChangeDebouncer and DirectoryWatcher."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

from recall.index.watcher import ChangeDebouncer, DirectoryWatcher, _MemoryEventHandler
from recall.ingest.scanner import ScanRoot


def test_burst_collapses_to_one_callback():
    calls: list[str] = []

    async def run():
        debouncer = ChangeDebouncer(0.05, calls.append)
        for _ in range(10):
            debouncer.notify("root")
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.15)
        debouncer.close()

    asyncio.run(run())
    assert calls == ["root"]


def test_scopes_debounce_independently():
    calls: list[str] = []

    async def run():
        debouncer = ChangeDebouncer(0.03, calls.append)
        debouncer.notify("a")
        debouncer.notify("b")
        debouncer.notify("a")
        await asyncio.sleep(0.1)
        debouncer.close()

    asyncio.run(run())
    assert sorted(calls) == ["a", "b"]


def test_async_callback_is_awaited():
    seen: list[str] = []

    async def callback(scope: str) -> None:
        await asyncio.sleep(0)
        seen.append(scope)

    async def run():
        debouncer = ChangeDebouncer(0.01, callback)
        debouncer.notify("root")
        await asyncio.sleep(0.05)
        debouncer.close()

    asyncio.run(run())
    assert seen == ["root"]


def test_close_cancels_pending_timers():
    calls: list[str] = []

    async def run():
        debouncer = ChangeDebouncer(0.05, calls.append)
        debouncer.notify("root")
        assert debouncer.pending() == ["root"]
        debouncer.close()
        debouncer.notify("root")
        await asyncio.sleep(0.1)
        assert debouncer.pending() == []

    asyncio.run(run())
    assert calls == []


def test_notify_threadsafe_from_other_thread():
    calls: list[str] = []

    async def run():
        debouncer = ChangeDebouncer(0.01, calls.append)
        _ = debouncer.loop
        await asyncio.to_thread(debouncer.notify_threadsafe, "root")
        await asyncio.sleep(0.05)
        debouncer.close()

    asyncio.run(run())
    assert calls == ["root"]


def test_event_handler_filters_non_markdown():
    debouncer = MagicMock()
    handler = _MemoryEventHandler("root", debouncer)

    def event(path, is_directory=False, event_type="modified", dest_path=""):
        e = MagicMock()
        e.src_path = path
        e.dest_path = dest_path
        e.is_directory = is_directory
        e.event_type = event_type
        return e

    handler.on_any_event(event("/ws/notes.txt"))
    handler.on_any_event(event("/ws/memory", is_directory=True))
    handler.on_any_event(event("/ws/MEMORY.md", event_type="opened"))
    debouncer.notify_threadsafe.assert_not_called()

    handler.on_any_event(event("/ws/memory/day.md"))
    handler.on_any_event(event("/ws/tmp.swp", event_type="moved", dest_path="/ws/MEMORY.md"))
    assert debouncer.notify_threadsafe.call_count == 2
    debouncer.notify_threadsafe.assert_called_with("root")


def test_directory_watcher_reports_file_change(tmp_path):
    calls: list[str] = []
    root = ScanRoot(tmp_path)

    async def run():
        debouncer = ChangeDebouncer(0.05, calls.append)
        watcher = DirectoryWatcher([root, ScanRoot(tmp_path / "missing")], debouncer)
        watcher.start()
        try:
            assert watcher.running
            await asyncio.sleep(0.1)
            (tmp_path / "MEMORY.md").write_text("new fact", encoding="utf-8")
            for _ in range(40):
                if calls:
                    break
                await asyncio.sleep(0.05)
        finally:
            watcher.stop()
            debouncer.close()
        assert not watcher.running

    asyncio.run(run())
    assert calls and set(calls) == {root.scope}


def test_watcher_stop_without_start_is_noop(tmp_path):
    watcher = DirectoryWatcher([ScanRoot(Path(tmp_path))], ChangeDebouncer(0.1, print))
    watcher.stop()
    assert not watcher.running
