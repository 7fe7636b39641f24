"""Tests for chunk compression and the compression decision."""

import os
import zlib

import pytest

from chunkup.core.exceptions import DecompressionError, ValidationError
from chunkup.services.compression import (
    CompressionMode,
    compress,
    decide,
    decompress,
)


def test_round_trip_restores_original_bytes():
    """Test that decompressing a compressed payload yields the input."""
    samples = [b"", b"a", b"hello world" * 1000, os.urandom(70_000)]
    for data in samples:
        assert decompress(compress(data)) == data


def test_compress_produces_zlib_deflate_stream():
    """Test the wire format matches zlib (RFC 1950) deflate."""
    data = b"name,age\nJohn,30\n" * 100
    assert zlib.decompress(compress(data)) == data


def test_decompress_corrupt_payload():
    """Test that garbage is rejected with DecompressionError."""
    with pytest.raises(DecompressionError) as exc_info:
        decompress(b"definitely not deflate")

    assert exc_info.value.field == "body"
    assert isinstance(exc_info.value, ValidationError)


def test_decompress_truncated_payload():
    """Test that a truncated stream is rejected rather than half-inflated."""
    payload = compress(b"x" * 10_000 + os.urandom(1000))
    with pytest.raises(DecompressionError):
        decompress(payload[: len(payload) // 2])


def test_decide_always_and_never():
    """Test fixed modes ignore the sample."""
    incompressible = os.urandom(4096)
    assert decide("always", incompressible).enabled is True
    assert decide("never", b"a" * 4096).enabled is False
    assert decide("always", incompressible).sample_ratio is None


def test_decide_auto_enables_for_compressible_data():
    """Test auto mode enables compression when it saves at least 25%."""
    decision = decide(CompressionMode.AUTO, b"abcabcabc" * 10_000)

    assert decision.enabled is True
    assert decision.sample_ratio is not None
    assert decision.sample_ratio <= 0.75


def test_decide_auto_disables_for_random_data():
    """Test auto mode keeps incompressible media uncompressed."""
    decision = decide("auto", os.urandom(64 * 1024))

    assert decision.enabled is False
    assert decision.sample_ratio > 0.75


def test_decide_auto_respects_threshold():
    """Test a stricter threshold can turn compression off."""
    sample = b"abcabcabc" * 10_000
    ratio = decide("auto", sample).sample_ratio

    assert decide("auto", sample, threshold=ratio).enabled is True
    assert decide("auto", sample, threshold=ratio / 2).enabled is False


def test_decide_auto_empty_sample():
    """Test an empty sample never enables compression."""
    assert decide("auto", b"").enabled is False


def test_mode_aliases_and_unknown_mode():
    """Test mode parsing accepts aliases and rejects unknown names."""
    assert CompressionMode.parse("enabled") is CompressionMode.ALWAYS
    assert CompressionMode.parse("Disabled") is CompressionMode.NEVER
    assert CompressionMode.parse(" AUTO ") is CompressionMode.AUTO

    with pytest.raises(ValueError, match="Unknown compression mode"):
        CompressionMode.parse("sometimes")
