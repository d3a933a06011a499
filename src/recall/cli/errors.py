"""recall rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from recall.cli.errors import err_no_provider
    console.print(err_no_provider())
    raise typer.Exit(1)
"""

from __future__ import annotations

from collections.abc import Mapping

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_provider() -> str:
    """provider=auto found no credentials at all."""
    keys = "\n".join(f"    export {env}=..." for env in _ENV_MAP.values())
    return (
        "[red]Error:[/] No embedding provider is configured.\n"
        "  Set an API key for one of the supported providers:\n"
        f"{keys}"
    )


def err_provider(message: str) -> str:
    """Provider could not be created (any other reason)."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Check embedding.provider in recall.yaml or RECALL_EMBEDDING_PROVIDER."
    )


def err_config(message: str) -> str:
    """Config file failed validation."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix recall.yaml (or ~/.recall/config.yaml) and retry."
    )


def err_not_memory_file(path: str) -> str:
    """``recall get`` was asked for a path outside the memory roots."""
    return (
        f"[red]Error:[/] '{path}' is not an indexed memory file.\n"
        "  Only MEMORY.md, memory.md and memory/**/*.md under the configured roots can be read.\n"
        "  Run:  recall search <query>  to find valid paths."
    )


def err_file_unreadable(path: str, reason: str) -> str:
    return f"[red]Error:[/] Cannot read '{path}': {reason}"


def err_sync_failed(failures: Mapping[str, BaseException]) -> str:
    """One or more files failed during ``recall index``."""
    lines = "\n".join(f"    {path}: {exc}" for path, exc in sorted(failures.items()))
    return (
        f"[red]Error:[/] {len(failures)} file(s) could not be indexed:\n"
        f"{lines}\n"
        "  Other files were indexed. Fix the cause (API key, network, timeout) and run:\n"
        "    recall index"
    )


def err_search_failed(message: str) -> str:
    return (
        f"[red]Error:[/] Search failed: {message}\n"
        "  Check your embedding provider credentials and network, then retry."
    )


def warn_no_index(db_path: str) -> str:
    """Status/search against a workspace that was never indexed."""
    return (
        f"[yellow]No index found at[/] '{db_path}'.\n"
        "  Run:  recall index"
    )
