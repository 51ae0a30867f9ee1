"""Binary record format for stored profiles.

One record holds every embedding of one profile:

    int32 sample_count
    int32 dimension
    sample_count * dimension * float32     (one row per sample)

Records written by older releases hold a single sample:

    int32 dimension
    dimension * float32

All integers and floats are little-endian.
"""

import struct
from typing import List, Sequence

import numpy as np

from ..errors import DimensionMismatch, StorageError

_INT32 = struct.Struct("<i")
_HEADER = struct.Struct("<ii")
_FLOAT32 = np.dtype("<f4")


def as_embedding(vector) -> np.ndarray:
    """Return ``vector`` as a flat little-endian float32 array."""
    array = np.asarray(vector, dtype=_FLOAT32).reshape(-1)
    if array.size == 0:
        raise ValueError("Embedding must not be empty")
    return array


def encode_embeddings(embeddings: Sequence[np.ndarray]) -> bytes:
    """Serialize a non-empty list of equal-length embeddings."""
    if not embeddings:
        raise ValueError("Cannot encode an empty embedding list")

    rows = [as_embedding(e) for e in embeddings]
    dimension = rows[0].size
    for row in rows[1:]:
        if row.size != dimension:
            raise DimensionMismatch(dimension, row.size)

    matrix = np.stack(rows).astype(_FLOAT32, copy=False)
    return _HEADER.pack(len(rows), dimension) + matrix.tobytes()


def encode_legacy(embedding: np.ndarray) -> bytes:
    """Serialize one embedding in the old single-sample layout."""
    row = as_embedding(embedding)
    return _INT32.pack(row.size) + row.tobytes()


def decode_embeddings(record: bytes) -> List[np.ndarray]:
    """Decode a record in either layout.

    Raises:
        StorageError: if the record length matches neither layout.
    """
    length = len(record)
    if length < _INT32.size:
        raise StorageError(f"Corrupt record: {length} bytes is too short")

    (first,) = _INT32.unpack_from(record, 0)

    if length >= _HEADER.size:
        count, dimension = _HEADER.unpack_from(record, 0)
        if count > 0 and dimension > 0 and _HEADER.size + count * dimension * 4 == length:
            matrix = np.frombuffer(record, dtype=_FLOAT32, offset=_HEADER.size)
            matrix = matrix.reshape(count, dimension)
            return [row.copy() for row in matrix]

    dimension = first
    if dimension <= 0 or _INT32.size + dimension * 4 != length:
        raise StorageError(
            f"Corrupt record: {length} bytes does not match a "
            f"{max(dimension, 0)}-dimension legacy sample"
        )
    return [np.frombuffer(record, dtype=_FLOAT32, offset=_INT32.size).copy()]
