"""Exact similarity matching of query embeddings against stored profiles."""

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np

from ..errors import DimensionMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchCandidate:
    """Best-scoring profile for a set of query embeddings.

    Similarities are cosine similarities remapped from [-1, 1] to [0, 1].
    """

    name: str
    average: float
    maximum: float
    pairs: int

    def meets(self, threshold: float) -> bool:
        """Check whether the average similarity reaches ``threshold``."""
        return self.average >= threshold


def remap_similarity(cosine):
    """Map cosine similarity from [-1, 1] to [0, 1]."""
    return (cosine + 1.0) * 0.5


def _as_matrix(embeddings: Sequence[np.ndarray]) -> np.ndarray:
    rows = [np.asarray(e, dtype=np.float64).reshape(-1) for e in embeddings]
    dimension = rows[0].size
    for row in rows[1:]:
        if row.size != dimension:
            raise DimensionMismatch(dimension, row.size)
    return np.stack(rows)


def score_profile(queries: np.ndarray, stored: Sequence[np.ndarray]) -> Optional[MatchCandidate]:
    """Score every (query, stored) pair for one profile.

    Returns None when the profile cannot be compared: no samples, or any
    sample whose dimension differs from the queries.
    """
    if len(stored) == 0:
        return None

    dimension = queries.shape[1]
    if any(np.asarray(s).size != dimension for s in stored):
        return None

    # One product per query row and an exactly rounded sum, so the result
    # does not depend on query order
    stored_matrix = _as_matrix(stored)
    similarities = remap_similarity(np.stack([stored_matrix @ query for query in queries]))
    return MatchCandidate(
        name="",
        average=math.fsum(similarities.ravel()) / similarities.size,
        maximum=float(similarities.max()),
        pairs=int(similarities.size),
    )


def best_match(
    queries: Sequence[np.ndarray],
    profiles: Mapping[str, Sequence[np.ndarray]],
    target_name: Optional[str] = None,
    allow_all: bool = False,
) -> Optional[MatchCandidate]:
    """Find the profile with the highest average similarity.

    Args:
        queries: Query embeddings, all of one dimension
        profiles: Mapping of profile name to stored embeddings
        target_name: Only profile considered when ``allow_all`` is False
        allow_all: Consider every profile

    Returns:
        The best candidate, or None if no profile produced a scored pair.
        Equal averages resolve to the lexicographically smallest name.
    """
    if not queries:
        return None

    query_matrix = _as_matrix(queries)
    best: Optional[MatchCandidate] = None

    for name in sorted(profiles):
        if not allow_all and name != target_name:
            continue

        scored = score_profile(query_matrix, profiles[name])
        if scored is None:
            logger.debug(f"Skipping profile {name}: empty or dimension mismatch")
            continue

        if best is None or scored.average > best.average:
            best = MatchCandidate(name, scored.average, scored.maximum, scored.pairs)

    return best
