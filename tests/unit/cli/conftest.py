"""Fixtures for CLI tests: isolated config, fake provider, sample workspace."""

from __future__ import annotations

from pathlib import Path

import pytest

import recall.config
from recall.cli import common


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep ~/.recall/config.yaml and RECALL_* env out of CLI tests."""
    monkeypatch.setattr(recall.config, "_GLOBAL_CONFIG_PATH", tmp_path / "no-home" / "config.yaml")
    for var in ("RECALL_EMBEDDING_PROVIDER", "RECALL_EMBEDDING_MODEL", "RECALL_STORE_PATH"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(common.console, "width", 200)


@pytest.fixture
def provider(monkeypatch, make_provider):
    """Route every manager the CLI builds to one FakeProvider."""
    fake = make_provider(dims=32)
    monkeypatch.setattr(
        "recall.index.manager.create_embedding_provider",
        lambda *args, **kwargs: fake,
    )
    return fake


@pytest.fixture
def no_provider(monkeypatch):
    def _raise(*args, **kwargs):
        raise RuntimeError("No embedding provider available")

    monkeypatch.setattr("recall.index.manager.create_embedding_provider", _raise)


@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path / "ws"
    (ws / "memory").mkdir(parents=True)
    (ws / "MEMORY.md").write_text(
        "# Preferences\nUser likes green tea in the morning.\n", encoding="utf-8"
    )
    (ws / "memory" / "projects.md").write_text(
        "# Projects\nThe lighthouse project ships on Friday.\n", encoding="utf-8"
    )
    (ws / "README.md").write_text("Not memory.\n", encoding="utf-8")
    return ws
