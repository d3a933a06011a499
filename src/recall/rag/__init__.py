"""recall ranking: hybrid fusion of vector and keyword results."""

from recall.rag.hybrid import make_snippet, merge_hybrid_results, normalize_scores, rank_vector_only

__all__ = ["make_snippet", "merge_hybrid_results", "normalize_scores", "rank_vector_only"]
