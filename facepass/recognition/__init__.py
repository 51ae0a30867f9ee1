"""Face recognition.

Contains:
- Embedding backends (image -> unit-norm vector)
- Exact best-match scoring against stored profiles
"""

from .embeddings import BaseEmbeddingBackend, OnnxEmbeddingBackend
from .matcher import MatchCandidate, best_match, remap_similarity, score_profile

__all__ = [
    "BaseEmbeddingBackend",
    "OnnxEmbeddingBackend",
    "MatchCandidate",
    "best_match",
    "remap_similarity",
    "score_profile",
]
