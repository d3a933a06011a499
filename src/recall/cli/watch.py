"""recall watch: keep the index in sync until interrupted."""

from __future__ import annotations

import asyncio
from pathlib import Path

from recall.cli.common import AgentOption, WorkspaceOption, console, open_manager
from recall.cli.errors import err_sync_failed
from recall.index.manager import MemoryIndexManager, SyncError


def watch_cmd(
    workspace: WorkspaceOption = Path("."),
    agent: AgentOption = "default",
) -> None:
    """Index once, then resync whenever memory files change (Ctrl+C to stop)."""
    manager = open_manager(workspace, agent)
    try:
        asyncio.run(_watch(manager))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/]")
    finally:
        manager.close()


async def _watch(manager: MemoryIndexManager) -> None:
    try:
        report = await manager.sync()
        console.print(f"[green]✓[/] {report.indexed} indexed, {report.removed} removed")
    except SyncError as exc:
        console.print(err_sync_failed(exc.failures))

    if not manager.start_watching():
        console.print("[yellow]Watching is disabled[/] (sync.watch: false in recall.yaml).")
        return

    roots = ", ".join(str(r.path) for r in manager.scan_roots)
    console.print(f"Watching {roots}. Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    finally:
        manager.close()
