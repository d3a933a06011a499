"""recall CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from recall.cli.index import index_cmd
from recall.cli.search import get_cmd, search_cmd
from recall.cli.status import status_cmd
from recall.cli.watch import watch_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("recall")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"recall {_installed_version()}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(name)s: %(message)s")


app = typer.Typer(
    name="recall",
    help=(
        "recall: searchable memory for AI agents.\n\n"
        "  recall index   Index MEMORY.md and memory/*.md files.\n"
        "  recall search  Hybrid vector + keyword search over indexed memory."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logging."),
    ] = False,
) -> None:
    """recall: searchable memory for AI agents."""
    _setup_logging(verbose)


app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("get")(get_cmd)
app.command("status")(status_cmd)
app.command("watch")(watch_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed recall version."""
    typer.echo(f"recall {_installed_version()}")


if __name__ == "__main__":
    app()
