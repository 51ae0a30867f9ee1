"""Embedding persistence.

Contains:
- EmbeddingStore: per-profile embedding lists in a transactional store
- Record codec for the versioned binary profile layout
"""

from .codec import as_embedding, decode_embeddings, encode_embeddings, encode_legacy
from .store import EmbeddingStore

__all__ = [
    "EmbeddingStore",
    "as_embedding",
    "decode_embeddings",
    "encode_embeddings",
    "encode_legacy",
]
