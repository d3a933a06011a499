"""Embedding providers: one async ``embed(texts)`` interface over LiteLLM backends.

Every backend is reached through ``litellm.aembedding`` with a
``provider/model`` model string. API keys are never read from config files:
they are resolved at call time through getter callables, which default to
the provider's environment variable.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

KeyGetter = Callable[[], "str | None"]

# provider -> (default model, default dimensions)
_DEFAULT_MODELS: dict[str, tuple[str, int]] = {
    "openai": ("text-embedding-3-small", 1536),
    "gemini": ("gemini-embedding-001", 768),
    "voyage": ("voyage-3-large", 1024),
}

# Known dimensions for non-default models.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "gemini-embedding-001": 768,
    "text-embedding-004": 768,
    "voyage-3-large": 1024,
    "voyage-3": 1024,
    "voyage-3-lite": 512,
}

_PROVIDER_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}

# Preference order for provider="auto".
_AUTO_ORDER: tuple[str, ...] = ("openai", "gemini", "voyage")


class EmbeddingProvider(ABC):
    """Uniform interface over embedding backends.

    Attributes:
        id: Backend name (``openai``, ``gemini``, ``voyage`` or a test id).
        model: Backend model name.
        dimensions: Vector length produced, or None until known.
        fallback_from: The provider requested, when ``auto`` picked another.
        fallback_reason: Why the requested provider was not used.
    """

    id: str
    model: str
    dimensions: int | None = None
    fallback_from: str | None = None
    fallback_reason: str | None = None

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*, returning one vector per input in input order."""


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """Embedding backend reached through ``litellm.aembedding``."""

    def __init__(
        self,
        provider: str,
        model: str | None = None,
        api_key: KeyGetter | None = None,
        dimensions: int | None = None,
    ) -> None:
        if provider not in _DEFAULT_MODELS:
            raise ValueError(
                f"Unknown embedding provider '{provider}'. "
                f"Choose one of: {', '.join(sorted(_DEFAULT_MODELS))}"
            )
        default_model, default_dims = _DEFAULT_MODELS[provider]
        self.id = provider
        self.model = model or default_model
        if dimensions is None:
            dimensions = _MODEL_DIMENSIONS.get(self.model)
            if dimensions is None and self.model == default_model:
                dimensions = default_dims
        self.dimensions = dimensions
        self._api_key = api_key or _env_getter(provider)

    @property
    def litellm_model(self) -> str:
        return f"{self.id}/{self.model}"

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        response = await litellm.aembedding(
            model=self.litellm_model,
            input=list(texts),
            api_key=self._api_key(),
        )
        items = sorted(
            enumerate(response.data),
            key=lambda pair: _field(pair[1], "index", pair[0]),
        )
        vectors = [list(_field(item, "embedding")) for _, item in items]
        if len(vectors) != len(texts):
            raise RuntimeError(
                f"{self.litellm_model} returned {len(vectors)} embeddings for {len(texts)} inputs"
            )
        if vectors and self.dimensions != len(vectors[0]):
            self.dimensions = len(vectors[0])
        return vectors


def _field(item: object, name: str, default: object = None) -> object:
    """Read *name* from a LiteLLM response item (dict or object)."""
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def _env_getter(provider: str) -> KeyGetter:
    env_var = _PROVIDER_ENV[provider]
    return lambda: os.environ.get(env_var) or None


def create_embedding_provider(
    provider: str = "auto",
    model: str | None = None,
    key_getters: Mapping[str, KeyGetter] | None = None,
) -> EmbeddingProvider:
    """Build the embedding provider named by *provider*.

    Args:
        provider: ``openai``, ``gemini``, ``voyage`` or ``auto``.
        model: Model override. Ignored for backends ``auto`` falls through to.
        key_getters: Per-provider API key getters; missing entries read the
            provider's environment variable.

    Raises:
        ValueError: If *provider* is not a known name.
        RuntimeError: If the selected provider (or, for ``auto``, every
            provider) has no API key.
    """
    provider = provider.lower()
    getters = {name: _env_getter(name) for name in _PROVIDER_ENV}
    if key_getters:
        getters.update(key_getters)

    if provider == "auto":
        return _create_auto(model, getters)

    if provider not in _DEFAULT_MODELS:
        raise ValueError(
            f"Unknown embedding provider '{provider}'. "
            f"Choose one of: auto, {', '.join(sorted(_DEFAULT_MODELS))}"
        )
    if not getters[provider]():
        raise RuntimeError(
            f"No API key found for embedding provider '{provider}'. "
            f"Set the {_PROVIDER_ENV[provider]} environment variable."
        )
    return LiteLLMEmbeddingProvider(provider, model, api_key=getters[provider])


def _create_auto(model: str | None, getters: Mapping[str, KeyGetter]) -> EmbeddingProvider:
    missing: list[str] = []
    for name in _AUTO_ORDER:
        if not getters[name]():
            missing.append(name)
            continue
        chosen = LiteLLMEmbeddingProvider(
            name, model if not missing else None, api_key=getters[name]
        )
        if missing:
            chosen.fallback_from = missing[0]
            chosen.fallback_reason = f"no API key for {', '.join(missing)}"
        return chosen
    env_vars = ", ".join(_PROVIDER_ENV[name] for name in _AUTO_ORDER)
    raise RuntimeError(f"No embedding provider available. Set one of: {env_vars}.")
