"""Hybrid ranking: weighted fusion of vector and keyword candidate lists.

Each candidate list is normalized to [0, 1] by its own maximum, then

    final(d) = vector_weight * v(d) + text_weight * t(d)

where a chunk missing from one list contributes 0 for that term. Results are
sorted by final score (stable: vector candidates first in their original
order, then keyword-only candidates), filtered by ``min_score`` and truncated.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from recall.config import (
    DEFAULT_HYBRID_TEXT_WEIGHT,
    DEFAULT_HYBRID_VECTOR_WEIGHT,
    DEFAULT_MAX_SNIPPET_CHARS,
)
from recall.db.models import SearchResult


def make_snippet(text: str, max_chars: int = DEFAULT_MAX_SNIPPET_CHARS) -> str:
    """Bound *text* to *max_chars* characters."""
    return text if len(text) <= max_chars else text[:max_chars]


def normalize_scores(scores: Sequence[float]) -> list[float]:
    """Scale *scores* into [0, 1] by dividing by the list maximum.

    Negative scores clamp to 0. A list whose maximum is 0 normalizes to zeros.
    """
    clamped = [max(0.0, s) for s in scores]
    top = max(clamped, default=0.0)
    if top <= 0.0:
        return [0.0] * len(clamped)
    return [s / top for s in clamped]


def merge_hybrid_results(
    vector_results: Sequence[SearchResult],
    keyword_results: Sequence[SearchResult],
    *,
    vector_weight: float = DEFAULT_HYBRID_VECTOR_WEIGHT,
    text_weight: float = DEFAULT_HYBRID_TEXT_WEIGHT,
    min_score: float = 0.0,
    limit: int | None = None,
    snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS,
) -> list[SearchResult]:
    """Fuse vector and keyword candidates into one ranked list.

    Returned results carry the combined ``score`` plus the normalized
    ``vector_score`` / ``text_score`` that produced it.
    """
    vec_norm = normalize_scores([r.score for r in vector_results])
    kw_norm = normalize_scores([r.score for r in keyword_results])

    # Insertion order is the tie-break order.
    merged: dict[str, SearchResult] = {}
    vec_scores: dict[str, float] = {}
    text_scores: dict[str, float] = {}

    for result, score in zip(vector_results, vec_norm):
        if result.id not in merged:
            merged[result.id] = result
            vec_scores[result.id] = score
    for result, score in zip(keyword_results, kw_norm):
        if result.id not in merged:
            merged[result.id] = result
        if result.id not in text_scores:
            text_scores[result.id] = score

    fused: list[SearchResult] = []
    for chunk_id, result in merged.items():
        v = vec_scores.get(chunk_id)
        t = text_scores.get(chunk_id)
        final = vector_weight * (v or 0.0) + text_weight * (t or 0.0)
        fused.append(
            replace(
                result,
                score=final,
                vector_score=v,
                text_score=t,
                snippet=make_snippet(result.snippet, snippet_chars),
            )
        )

    fused.sort(key=lambda r: r.score, reverse=True)
    fused = [r for r in fused if r.score >= min_score]
    return fused[:limit] if limit is not None else fused


def rank_vector_only(
    vector_results: Sequence[SearchResult],
    *,
    min_score: float = 0.0,
    limit: int | None = None,
    snippet_chars: int = DEFAULT_MAX_SNIPPET_CHARS,
) -> list[SearchResult]:
    """Rank by raw vector score alone (hybrid disabled)."""
    ranked = [
        replace(r, snippet=make_snippet(r.snippet, snippet_chars))
        for r in sorted(vector_results, key=lambda r: r.score, reverse=True)
        if r.score >= min_score
    ]
    return ranked[:limit] if limit is not None else ranked
