"""recall configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (RECALL_EMBEDDING_PROVIDER, RECALL_EMBEDDING_MODEL,
                             RECALL_STORE_PATH)
  3. Per-workspace recall.yaml
  4. Global ~/.recall/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_TOKENS = 400
DEFAULT_CHUNK_OVERLAP = 80
DEFAULT_MAX_RESULTS = 10
DEFAULT_MIN_SCORE = 0.35
DEFAULT_HYBRID_VECTOR_WEIGHT = 0.7
DEFAULT_HYBRID_TEXT_WEIGHT = 0.3
DEFAULT_HYBRID_CANDIDATE_MULTIPLIER = 4
DEFAULT_WATCH_DEBOUNCE_MS = 1500
DEFAULT_MAX_SNIPPET_CHARS = 700
DEFAULT_EMBED_TIMEOUT_S = 60.0

PROVIDERS: frozenset[str] = frozenset(["openai", "gemini", "voyage", "auto"])
SOURCES: frozenset[str] = frozenset(["user", "agent", "workspace"])

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".recall"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "recall.yaml"

# Same key filter as the global-config guard: api_key, *_token, secret, password...
# Does NOT match legitimate keys like chunk tokens or max_results.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["store", "embedding", "chunking", "query", "sync", "cache", "vector", "roots"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StoreCfg:
    """Index database location (recall.yaml: store:).

    ``path`` is None until resolved against the workspace and agent id.
    """

    path: str | None = None


@dataclass
class EmbeddingCfg:
    """Embedding backend selection (recall.yaml: embedding:)."""

    provider: str = "auto"  # openai | gemini | voyage | auto
    model: str | None = None


@dataclass
class ChunkingCfg:
    """Chunk budget in estimated tokens (recall.yaml: chunking:)."""

    tokens: int = DEFAULT_CHUNK_TOKENS
    overlap: int = DEFAULT_CHUNK_OVERLAP


@dataclass
class HybridCfg:
    """Vector + keyword score fusion (recall.yaml: query.hybrid:)."""

    enabled: bool = True
    vector_weight: float = DEFAULT_HYBRID_VECTOR_WEIGHT
    text_weight: float = DEFAULT_HYBRID_TEXT_WEIGHT
    candidate_multiplier: int = DEFAULT_HYBRID_CANDIDATE_MULTIPLIER


@dataclass
class QueryCfg:
    """Search defaults (recall.yaml: query:)."""

    max_results: int = DEFAULT_MAX_RESULTS
    min_score: float = DEFAULT_MIN_SCORE
    max_snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS
    hybrid: HybridCfg = field(default_factory=HybridCfg)


@dataclass
class SyncCfg:
    """When and how the index resyncs (recall.yaml: sync:)."""

    on_search: bool = True
    watch: bool = True
    watch_debounce_ms: int = DEFAULT_WATCH_DEBOUNCE_MS
    embed_timeout_s: float = DEFAULT_EMBED_TIMEOUT_S


@dataclass
class CacheCfg:
    """Embedding cache (recall.yaml: cache:). ``max_entries`` None = unbounded."""

    enabled: bool = True
    max_entries: int | None = None


@dataclass
class VectorCfg:
    """Native vector index (recall.yaml: vector:)."""

    enabled: bool = True


@dataclass
class RootCfg:
    """A directory to scan for memory files (recall.yaml: roots[]).

    Attributes:
        path: Directory path; relative paths resolve against the workspace.
        source: Memory source tag: 'user', 'agent', or 'workspace'.
        patterns: Glob patterns (relative to *path*) selecting memory files.
            None means the scanner defaults.
    """

    path: str
    source: str = "agent"
    patterns: list[str] | None = None


@dataclass
class RecallConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    store: StoreCfg = field(default_factory=StoreCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    query: QueryCfg = field(default_factory=QueryCfg)
    sync: SyncCfg = field(default_factory=SyncCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    vector: VectorCfg = field(default_factory=VectorCfg)
    roots: list[RootCfg] = field(default_factory=list)

    def store_path(self, workspace_dir: Path, agent_id: str = "default") -> Path:
        """Return the database path for *agent_id* under *workspace_dir*."""
        if self.store.path:
            p = Path(self.store.path).expanduser()
            return p if p.is_absolute() else workspace_dir / p
        return workspace_dir / ".recall" / "memory" / f"{agent_id}.sqlite"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)
        elif isinstance(obj, list):
            for item in obj:
                _scan(item, path)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: RecallConfig) -> None:
    """Raise ConfigError if *cfg* holds values the indexer cannot work with."""
    if cfg.embedding.provider not in PROVIDERS:
        raise ConfigError(
            f"embedding.provider must be one of {sorted(PROVIDERS)}, "
            f"got '{cfg.embedding.provider}'"
        )
    if cfg.chunking.tokens < 1:
        raise ConfigError(f"chunking.tokens must be >= 1, got {cfg.chunking.tokens}")
    if not 0 <= cfg.chunking.overlap < cfg.chunking.tokens:
        raise ConfigError(
            f"chunking.overlap must be in [0, {cfg.chunking.tokens}), "
            f"got {cfg.chunking.overlap}"
        )
    hybrid = cfg.query.hybrid
    if hybrid.vector_weight < 0 or hybrid.text_weight < 0:
        raise ConfigError("query.hybrid weights must be >= 0")
    if hybrid.candidate_multiplier < 1:
        raise ConfigError(
            f"query.hybrid.candidate_multiplier must be >= 1, got {hybrid.candidate_multiplier}"
        )
    if cfg.query.max_results < 1:
        raise ConfigError(f"query.max_results must be >= 1, got {cfg.query.max_results}")
    if cfg.sync.watch_debounce_ms < 0:
        raise ConfigError("sync.watch_debounce_ms must be >= 0")
    if cfg.cache.max_entries is not None and cfg.cache.max_entries < 1:
        raise ConfigError("cache.max_entries must be >= 1 when set")
    for root in cfg.roots:
        if root.source not in SOURCES:
            raise ConfigError(
                f"roots[].source must be one of {sorted(SOURCES)}, got '{root.source}'"
            )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> RecallConfig:
    """Build a *RecallConfig* from a merged raw YAML dict."""
    cfg = RecallConfig()

    if "store" in data:
        s = data["store"] or {}
        cfg.store = StoreCfg(path=s.get("path") or cfg.store.path)

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            provider=str(e.get("provider", cfg.embedding.provider)).lower(),
            model=e.get("model") or cfg.embedding.model,
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            tokens=int(c.get("tokens", cfg.chunking.tokens)),
            overlap=int(c.get("overlap", cfg.chunking.overlap)),
        )

    if "query" in data:
        q = data["query"] or {}
        h = q.get("hybrid") or {}
        cfg.query = QueryCfg(
            max_results=int(q.get("max_results", cfg.query.max_results)),
            min_score=float(q.get("min_score", cfg.query.min_score)),
            max_snippet_chars=int(q.get("max_snippet_chars", cfg.query.max_snippet_chars)),
            hybrid=HybridCfg(
                enabled=bool(h.get("enabled", cfg.query.hybrid.enabled)),
                vector_weight=float(h.get("vector_weight", cfg.query.hybrid.vector_weight)),
                text_weight=float(h.get("text_weight", cfg.query.hybrid.text_weight)),
                candidate_multiplier=int(
                    h.get("candidate_multiplier", cfg.query.hybrid.candidate_multiplier)
                ),
            ),
        )

    if "sync" in data:
        sy = data["sync"] or {}
        cfg.sync = SyncCfg(
            on_search=bool(sy.get("on_search", cfg.sync.on_search)),
            watch=bool(sy.get("watch", cfg.sync.watch)),
            watch_debounce_ms=int(sy.get("watch_debounce_ms", cfg.sync.watch_debounce_ms)),
            embed_timeout_s=float(sy.get("embed_timeout_s", cfg.sync.embed_timeout_s)),
        )

    if "cache" in data:
        ca = data["cache"] or {}
        max_entries = ca.get("max_entries", cfg.cache.max_entries)
        cfg.cache = CacheCfg(
            enabled=bool(ca.get("enabled", cfg.cache.enabled)),
            max_entries=int(max_entries) if max_entries is not None else None,
        )

    if "vector" in data:
        v = data["vector"] or {}
        cfg.vector = VectorCfg(enabled=bool(v.get("enabled", cfg.vector.enabled)))

    if "roots" in data:
        roots: list[RootCfg] = []
        for r in data["roots"] or []:
            if isinstance(r, str):
                roots.append(RootCfg(path=r))
                continue
            patterns = r.get("patterns")
            roots.append(
                RootCfg(
                    path=str(r["path"]),
                    source=str(r.get("source", "agent")).lower(),
                    patterns=[str(p) for p in patterns] if patterns else None,
                )
            )
        cfg.roots = roots

    return cfg


def _apply_env_overrides(cfg: RecallConfig) -> RecallConfig:
    """Apply RECALL_* environment variable overrides."""
    if provider := os.environ.get("RECALL_EMBEDDING_PROVIDER"):
        cfg.embedding.provider = provider.lower()
    if model := os.environ.get("RECALL_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if store := os.environ.get("RECALL_STORE_PATH"):
        cfg.store.path = store
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    workspace_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RecallConfig:
    """Load and return a merged *RecallConfig*.

    Applies layers in order: global → per-workspace → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        workspace_dir: Directory to search for *recall.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *RecallConfig*.

    Raises:
        ConfigError: If global config contains API-key-like fields or any
            value fails validation.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = workspace_dir if workspace_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError, KeyError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    validate_config(cfg)
    return cfg
