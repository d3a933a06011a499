"""Filesystem watching with per-scope debouncing.

watchdog observers run on their own threads; events are handed to the asyncio
loop with ``call_soon_threadsafe`` and collapsed per scope by ChangeDebouncer,
so a burst of saves produces one resync.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from recall.ingest.scanner import ScanRoot

logger = logging.getLogger(__name__)


class ChangeDebouncer:
    """Collapse repeated ``notify(scope)`` calls into one ``callback(scope)``.

    Every notify restarts that scope's timer; the callback runs once the scope
    has been quiet for *delay_s* seconds. *callback* may be a plain function
    or a coroutine function. Must be used from the loop's thread; other
    threads use notify_threadsafe().
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[str], Any],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.delay_s = delay_s
        self._callback = callback
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def notify(self, scope: str) -> None:
        if self._closed:
            return
        timer = self._timers.pop(scope, None)
        if timer is not None:
            timer.cancel()
        self._timers[scope] = self.loop.call_later(self.delay_s, self._fire, scope)

    def notify_threadsafe(self, scope: str) -> None:
        self.loop.call_soon_threadsafe(self.notify, scope)

    def pending(self) -> list[str]:
        return list(self._timers)

    def _fire(self, scope: str) -> None:
        self._timers.pop(scope, None)
        if self._closed:
            return
        result = self._callback(scope)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self.loop)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Change callback failed: %s", task.exception())

    def close(self) -> None:
        """Cancel pending timers and running callbacks. Idempotent."""
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class _MemoryEventHandler(FileSystemEventHandler):
    """Forward markdown file events for one root to the debouncer."""

    def __init__(self, scope: str, debouncer: ChangeDebouncer) -> None:
        super().__init__()
        self._scope = scope
        self._debouncer = debouncer

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed", "closed_no_write"):
            return
        paths = [event.src_path, getattr(event, "dest_path", "") or ""]
        if not any(_is_markdown(p) for p in paths if p):
            return
        logger.debug("%s: %s", event.event_type, event.src_path)
        self._debouncer.notify_threadsafe(self._scope)


def _is_markdown(path: str | bytes) -> bool:
    if isinstance(path, bytes):
        path = path.decode(errors="replace")
    return path.lower().endswith(".md")


class DirectoryWatcher:
    """Watch every scan root recursively and report changes by root scope."""

    def __init__(self, roots: Sequence[ScanRoot], debouncer: ChangeDebouncer) -> None:
        self._roots = list(roots)
        self._debouncer = debouncer
        self._observer: Any = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Start observing. Roots that do not exist yet are skipped."""
        if self._observer is not None:
            return
        # Bind the loop now, while on the loop's thread.
        _ = self._debouncer.loop
        observer = Observer()
        observer.daemon = True
        watched = 0
        for root in self._roots:
            path = Path(root.path)
            if not path.is_dir():
                logger.warning("Not watching %s: directory does not exist", path)
                continue
            observer.schedule(_MemoryEventHandler(root.scope, self._debouncer), str(path), recursive=True)
            watched += 1
        observer.start()
        self._observer = observer
        logger.info("Watching %d memory root(s)", watched)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
