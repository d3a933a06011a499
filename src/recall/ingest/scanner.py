"""Memory file discovery: which files under which roots get indexed."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from recall.db.models import MemorySource

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS: tuple[str, ...] = ("MEMORY.md", "memory.md", "memory/**/*.md")


@dataclass(frozen=True)
class ScanRoot:
    """A directory whose memory files are indexed under one source tag."""

    path: Path
    source: MemorySource = MemorySource.AGENT
    patterns: tuple[str, ...] = DEFAULT_PATTERNS

    @property
    def scope(self) -> str:
        """Identifier used to group change notifications for this root."""
        return str(self.path)


@dataclass
class ScannedFile:
    """One memory file read during a scan."""

    path: str  # stored path: workspace-relative when possible
    abs_path: Path
    source: MemorySource
    content: str | None  # None when the file could not be read this cycle
    size: int
    mtime: float
    scope: str = field(default="")


class FileScanner(Protocol):
    """Anything that can list memory files for the index manager."""

    @property
    def roots(self) -> Sequence[ScanRoot]: ...

    def scan(self) -> list[ScannedFile]: ...

    def is_memory_file(self, path: Path) -> bool: ...

    def stored_path(self, path: Path) -> str: ...


class MemoryFileScanner:
    """Glob configured roots for markdown memory files and read them.

    A file matched by several roots is reported once, for the first root.
    Unreadable files are reported with ``content=None`` and a warning, so the
    caller can keep their existing index rows until a later scan reads them.
    """

    def __init__(self, roots: Sequence[ScanRoot], workspace_dir: Path | None = None) -> None:
        self._roots = [
            ScanRoot(r.path.expanduser().resolve(), MemorySource(r.source), tuple(r.patterns))
            for r in roots
        ]
        self._workspace = workspace_dir.resolve() if workspace_dir is not None else None

    @property
    def roots(self) -> list[ScanRoot]:
        return list(self._roots)

    def stored_path(self, path: Path) -> str:
        """Path as recorded in the index: relative to the workspace when inside it."""
        resolved = path.resolve()
        if self._workspace is not None and resolved.is_relative_to(self._workspace):
            return resolved.relative_to(self._workspace).as_posix()
        return resolved.as_posix()

    def iter_paths(self) -> Iterator[tuple[ScanRoot, Path]]:
        """Yield (root, absolute path) for every memory file, deduplicated."""
        seen: set[Path] = set()
        for root in self._roots:
            if not root.path.is_dir():
                logger.debug("Scan root %s does not exist; skipping", root.path)
                continue
            for pattern in root.patterns:
                for match in sorted(root.path.glob(pattern)):
                    if not match.is_file() or match.suffix.lower() != ".md":
                        continue
                    resolved = match.resolve()
                    if resolved in seen:
                        continue
                    seen.add(resolved)
                    yield root, resolved

    def is_memory_file(self, path: Path) -> bool:
        resolved = path.resolve()
        return any(p == resolved for _, p in self.iter_paths())

    def scan(self) -> list[ScannedFile]:
        files: list[ScannedFile] = []
        for root, path in self.iter_paths():
            content: str | None = None
            size, mtime = 0, 0.0
            try:
                stat = path.stat()
                size, mtime = stat.st_size, stat.st_mtime
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable memory file %s: %s", path, exc)
            files.append(
                ScannedFile(
                    path=self.stored_path(path),
                    abs_path=path,
                    source=root.source,
                    content=content,
                    size=size,
                    mtime=mtime,
                    scope=root.scope,
                )
            )
        return files
