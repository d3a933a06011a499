"""Tests for the vector codec, similarity helpers and vec0 table lifecycle."""

from __future__ import annotations

import math
import random
import struct

import pytest

from recall.db.vectors import (
    VECTOR_TABLE,
    VectorDecodeError,
    cosine_similarity,
    decode_vector,
    distance_to_score,
    encode_vector,
    ensure_vec_table,
    vec_table_exists,
)


@pytest.mark.parametrize("dims", [1, 4, 1536])
def test_round_trip_is_exact(dims):
    rng = random.Random(dims)
    # float32-representable values survive byte-for-byte
    vector = [struct.unpack("<f", struct.pack("<f", rng.uniform(-1, 1)))[0] for _ in range(dims)]
    blob = encode_vector(vector)
    assert len(blob) == dims * 4
    assert decode_vector(blob, dims) == vector
    assert encode_vector(decode_vector(blob)) == blob


def test_encoding_is_little_endian_float32():
    assert encode_vector([1.0]) == struct.pack("<f", 1.0)


def test_decode_rejects_partial_float():
    with pytest.raises(VectorDecodeError):
        decode_vector(b"\x00\x00\x80")


def test_decode_rejects_dimension_mismatch():
    blob = encode_vector([0.1, 0.2, 0.3])
    with pytest.raises(VectorDecodeError):
        decode_vector(blob, 4)


def test_cosine_similarity_basic():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 1], [-1, -1]) == pytest.approx(-1.0)


def test_cosine_similarity_zero_norm_is_zero():
    assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0


def test_cosine_similarity_length_mismatch_is_zero():
    assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0


def test_distance_to_score():
    assert distance_to_score(0.0) == 1.0
    assert distance_to_score(1.0) == 0.5
    assert distance_to_score(-0.5) == 1.0
    assert math.isclose(distance_to_score(3.0), 0.25)


def test_ensure_vec_table_rejects_bad_dimensions(tmp_db):
    with pytest.raises(ValueError):
        ensure_vec_table(tmp_db, 0)


def test_ensure_vec_table_lifecycle(repo, tmp_db):
    if not repo.is_vector_available():
        pytest.skip("sqlite-vec not available")
    assert ensure_vec_table(tmp_db, 4) is True
    assert vec_table_exists(tmp_db)
    assert ensure_vec_table(tmp_db, 4, current_dims=4) is False
    assert ensure_vec_table(tmp_db, 8, current_dims=4) is True
    sql = tmp_db.execute(
        "SELECT sql FROM sqlite_master WHERE name=?", (VECTOR_TABLE,)
    ).fetchone()[0]
    assert "float[8]" in sql
