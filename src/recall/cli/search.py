"""recall search / recall get: query the index and read memory files."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from recall.cli.common import AgentOption, WorkspaceOption, console, open_manager
from recall.cli.errors import err_file_unreadable, err_not_memory_file, err_search_failed
from recall.db.models import MemorySource

_TABLE_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="What to look for.")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum results (default: query.max_results)."),
    ] = None,
    source: Annotated[
        list[MemorySource] | None,
        typer.Option("--source", "-s", help="Restrict to a memory source (repeatable)."),
    ] = None,
    min_score: Annotated[
        float | None,
        typer.Option("--min-score", help="Drop results below this score (default: query.min_score)."),
    ] = None,
    workspace: WorkspaceOption = Path("."),
    agent: AgentOption = "default",
) -> None:
    """Search memory with hybrid vector + keyword ranking."""
    manager = open_manager(workspace, agent)
    try:
        try:
            results = asyncio.run(
                manager.search(query, max_results=limit, min_score=min_score, sources=source)
            )
        except Exception as exc:  # provider/network failure; shown, then exit 1
            console.print(err_search_failed(str(exc)))
            raise typer.Exit(1) from exc
    finally:
        manager.close()

    if not results:
        console.print("[yellow]No results.[/]")
        return

    table = Table(show_lines=False)
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Location")
    table.add_column("Source", style="dim")
    table.add_column("Snippet")
    for r in results:
        snippet = " ".join(r.snippet.split())
        if len(snippet) > _TABLE_SNIPPET_CHARS:
            snippet = snippet[: _TABLE_SNIPPET_CHARS - 1] + "…"
        table.add_row(
            f"{r.score:.3f}",
            f"{r.path}:{r.start_line}-{r.end_line}",
            r.source.value,
            snippet,
        )
    console.print(table)


def get_cmd(
    path: Annotated[str, typer.Argument(help="Memory file path as shown by recall search.")],
    from_line: Annotated[
        int | None,
        typer.Option("--from", min=1, help="First line to print (1-based)."),
    ] = None,
    lines: Annotated[
        int | None,
        typer.Option("--lines", min=0, help="Number of lines to print."),
    ] = None,
    workspace: WorkspaceOption = Path("."),
    agent: AgentOption = "default",
) -> None:
    """Print a memory file, or a window of its lines."""
    manager = open_manager(workspace, agent)
    try:
        text = manager.read_file(path, from_line=from_line, lines=lines)
    except UnicodeDecodeError as exc:
        console.print(err_file_unreadable(path, str(exc)))
        raise typer.Exit(1) from exc
    except ValueError as exc:
        console.print(err_not_memory_file(path))
        raise typer.Exit(1) from exc
    except OSError as exc:
        console.print(err_file_unreadable(path, str(exc)))
        raise typer.Exit(1) from exc
    finally:
        manager.close()
    typer.echo(text)
