"""Tests for the profile record codec."""

import struct

import numpy as np
import pytest

from conftest import random_embedding
from facepass.errors import DimensionMismatch, StorageError
from facepass.storage import decode_embeddings, encode_embeddings, encode_legacy


class TestEncode:
    """Test cases for record encoding."""

    def test_header_layout(self):
        """Header is little-endian count then dimension."""
        record = encode_embeddings([np.ones(4, dtype=np.float32)] * 3)

        assert struct.unpack_from("<ii", record) == (3, 4)
        assert len(record) == 8 + 3 * 4 * 4

    def test_rows_in_order(self):
        rows = [np.full(2, i, dtype=np.float32) for i in range(3)]
        record = encode_embeddings(rows)

        values = np.frombuffer(record, dtype="<f4", offset=8)
        assert values.tolist() == [0, 0, 1, 1, 2, 2]

    def test_mixed_dimensions_rejected(self):
        with pytest.raises(DimensionMismatch):
            encode_embeddings([np.ones(4), np.ones(5)])

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            encode_embeddings([])


class TestDecode:
    """Test cases for record decoding."""

    @pytest.mark.parametrize("count", [1, 2, 5])
    def test_round_trip(self, count):
        embeddings = [random_embedding(384, seed=i) for i in range(count)]

        decoded = decode_embeddings(encode_embeddings(embeddings))

        assert len(decoded) == count
        for original, restored in zip(embeddings, decoded):
            np.testing.assert_array_equal(original, restored)

    def test_legacy_single_sample(self):
        """Old single-sample records decode to a one-element list."""
        embedding = random_embedding(128, seed=7)

        decoded = decode_embeddings(encode_legacy(embedding))

        assert len(decoded) == 1
        np.testing.assert_array_equal(decoded[0], embedding)

    def test_legacy_layout_bytes(self):
        record = struct.pack("<i", 3) + struct.pack("<3f", 0.5, -0.5, 1.0)

        decoded = decode_embeddings(record)

        assert decoded[0].tolist() == [0.5, -0.5, 1.0]

    def test_decoded_rows_are_writable_copies(self):
        decoded = decode_embeddings(encode_embeddings([np.ones(3)]))
        decoded[0][0] = 5.0
        assert decoded[0][0] == 5.0

    def test_too_short(self):
        with pytest.raises(StorageError):
            decode_embeddings(b"\x01\x00")

    def test_truncated_record(self):
        record = encode_embeddings([np.ones(4), np.ones(4)])

        with pytest.raises(StorageError):
            decode_embeddings(record[:-4])

    def test_trailing_bytes(self):
        record = encode_embeddings([np.ones(4)])

        with pytest.raises(StorageError):
            decode_embeddings(record + b"\x00\x00\x00\x00")

    def test_non_positive_dimension(self):
        with pytest.raises(StorageError):
            decode_embeddings(struct.pack("<i", -2) + b"\x00" * 8)
