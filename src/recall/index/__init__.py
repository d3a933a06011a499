"""recall index orchestration: sync, query and file watching."""

from recall.index.manager import IndexStatus, MemoryIndexManager, SyncError, SyncReport
from recall.index.watcher import ChangeDebouncer, DirectoryWatcher

__all__ = [
    "IndexStatus",
    "MemoryIndexManager",
    "SyncError",
    "SyncReport",
    "ChangeDebouncer",
    "DirectoryWatcher",
]
