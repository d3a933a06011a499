"""Options and manager setup shared by the recall commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from recall.cli.errors import err_config, err_no_api_key, err_no_provider, err_provider
from recall.config import ConfigError, RecallConfig, load_config
from recall.index.manager import MemoryIndexManager

console = Console()

WorkspaceOption = Annotated[
    Path,
    typer.Option("--workspace", "-w", help="Workspace directory holding the memory files."),
]
AgentOption = Annotated[
    str,
    typer.Option("--agent", help="Agent id; each agent has its own index file."),
]


def load_workspace_config(workspace: Path) -> RecallConfig:
    try:
        return load_config(workspace)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_manager(workspace: Path, agent: str, cfg: RecallConfig | None = None) -> MemoryIndexManager:
    """Build the manager for *workspace*/*agent*, turning setup errors into CLI errors."""
    if cfg is None:
        cfg = load_workspace_config(workspace)
    try:
        return MemoryIndexManager.create(workspace, agent, config=cfg)
    except RuntimeError as exc:
        if cfg.embedding.provider == "auto":
            console.print(err_no_provider())
        else:
            console.print(err_no_api_key(cfg.embedding.provider))
        raise typer.Exit(1) from exc
    except ValueError as exc:
        console.print(err_provider(str(exc)))
        raise typer.Exit(1) from exc
