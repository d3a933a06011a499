"""recall index: one sync pass over the workspace's memory files."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from recall.cli.common import AgentOption, WorkspaceOption, console, open_manager
from recall.cli.errors import err_sync_failed
from recall.index.manager import SyncError, SyncReport


def index_cmd(
    workspace: WorkspaceOption = Path("."),
    agent: AgentOption = "default",
) -> None:
    """Index new and changed memory files; drop files that were deleted."""
    manager = open_manager(workspace, agent)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task("Syncing memory files…", total=None)
            try:
                report = asyncio.run(manager.sync())
            except SyncError as exc:
                _print_report(exc.report)
                console.print(err_sync_failed(exc.failures))
                raise typer.Exit(1) from exc
        _print_report(report)
    finally:
        manager.close()


def _print_report(report: SyncReport) -> None:
    console.print(
        f"[green]✓[/] {report.scanned} file(s) scanned: "
        f"[bold]{report.indexed}[/] indexed, "
        f"{report.unchanged} unchanged, "
        f"{report.removed} removed"
    )
    if report.skipped:
        console.print(f"  [yellow]↷ {report.skipped} unreadable file(s) skipped[/]")
