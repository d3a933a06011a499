"""Tests for the recall CLI entry point: version, logging, config errors."""

from __future__ import annotations

import logging
from unittest.mock import patch

from typer.testing import CliRunner

from recall.cli.main import app

runner = CliRunner()


def test_version_flag_exits_zero() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "recall" in result.output.lower()


def test_version_command_shows_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("recall ")


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("index", "search", "get", "status", "watch"):
        assert command in result.output


def test_verbose_flag_enables_debug_logging(workspace) -> None:
    with patch("recall.cli.main.logging.basicConfig") as basic:
        result = runner.invoke(app, ["--verbose", "status", "-w", str(workspace)])
    assert result.exit_code == 0
    assert basic.call_args.kwargs["level"] == logging.DEBUG


def test_default_logging_is_warning(workspace) -> None:
    with patch("recall.cli.main.logging.basicConfig") as basic:
        runner.invoke(app, ["status", "-w", str(workspace)])
    assert basic.call_args.kwargs["level"] == logging.WARNING


def test_invalid_config_exits_one(workspace, provider) -> None:
    (workspace / "recall.yaml").write_text("chunking:\n  tokens: 0\n", encoding="utf-8")
    result = runner.invoke(app, ["index", "-w", str(workspace)])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert "chunking.tokens" in result.output
