"""recall status: index overview: counts, provider, vector and keyword search state."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from recall.cli.common import AgentOption, WorkspaceOption, console, load_workspace_config
from recall.config import RecallConfig
from recall.db.repository import Repository
from recall.index.manager import IndexStatus, MemoryIndexManager


def status_cmd(
    workspace: WorkspaceOption = Path("."),
    agent: AgentOption = "default",
) -> None:
    """Show index status for the workspace and agent."""
    cfg = load_workspace_config(workspace)
    db_path = cfg.store_path(workspace.resolve(), agent)

    if not db_path.exists():
        console.print(
            Panel(
                f"[yellow]No index found.[/]\n"
                f"  Store:  {db_path}\n"
                "  Run:  recall index",
                title="[bold]Memory Index[/]",
                expand=False,
            )
        )
        return

    try:
        manager = MemoryIndexManager.create(workspace, agent, config=cfg)
    except RuntimeError as exc:
        # No credentials: the store is still readable.
        _show_store_only(db_path, cfg, str(exc))
        return
    try:
        _show_status(manager.status())
    finally:
        manager.close()


def _show_status(st: IndexStatus) -> None:
    provider = f"{st.provider} / {st.model}"
    if st.fallback_from:
        provider += f"  [dim](fallback from {st.fallback_from}: {st.fallback_reason})[/]"
    lines = [
        f"Store:     {st.db_path}",
        f"Files: [bold]{st.files}[/]  |  Chunks: [bold]{st.chunks:,}[/]",
        f"Provider:  {provider}",
        _vector_line(st.vector_available, st.vector_reason, st.vector_dims),
        _fts_line(st.fts_available),
        f"Cache:     {'enabled' if st.cache_enabled else 'disabled'} ({st.cache_entries:,} entries)",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Memory Index[/]", expand=False))


def _show_store_only(db_path: Path, cfg: RecallConfig, reason: str) -> None:
    repo = Repository.open(db_path, vector=cfg.vector.enabled)
    try:
        stats = repo.get_stats()
        vec = repo.get_vector_status()
        lines = [
            f"Store:     {db_path}",
            f"Files: [bold]{stats['files']}[/]  |  Chunks: [bold]{stats['chunks']:,}[/]",
            f"Provider:  [red]unavailable[/] ({reason})",
            _vector_line(vec.available, vec.reason, repo.vector_dims),
            _fts_line(repo.is_fts_available()),
            f"Cache:     {repo.count_cached_embeddings():,} entries",
        ]
    finally:
        repo.close()
    console.print(Panel("\n".join(lines), title="[bold]Memory Index[/]", expand=False))


def _vector_line(available: bool, reason: str, dims: int | None) -> str:
    if available:
        dims_info = f", {dims} dims" if dims else ""
        return f"Vectors:   [green]✓[/] sqlite-vec ({reason}{dims_info})"
    return f"Vectors:   [yellow]fallback[/] in-process cosine ({reason})"


def _fts_line(available: bool) -> str:
    if available:
        return "Keywords:  [green]✓[/] FTS5"
    return "Keywords:  [yellow]fallback[/] substring match (FTS5 unavailable)"
