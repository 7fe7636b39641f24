"""Chunk compression and the once-per-upload compression decision.

Chunks are compressed as zlib "deflate" streams (RFC 1950), the format the
browser ``CompressionStream('deflate')`` produces, so browser and Python
clients can talk to the same server.
"""

import logging
import zlib
from dataclasses import dataclass
from enum import Enum

from chunkup.core.exceptions import DecompressionError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.75


class CompressionMode(str, Enum):
    """How the client decides whether to compress chunks."""

    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: "str | CompressionMode") -> "CompressionMode":
        """Parse a mode name, accepting ``enabled``/``disabled`` as aliases."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {"enabled": cls.ALWAYS, "disabled": cls.NEVER}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unknown compression mode {value!r}; expected one of "
                f"{', '.join(m.value for m in cls)}"
            ) from None


@dataclass(frozen=True)
class CompressionDecision:
    """Compression setting fixed for every chunk of one upload."""

    mode: CompressionMode
    enabled: bool
    threshold: float = DEFAULT_THRESHOLD
    sample_ratio: float | None = None


def compress(data: bytes) -> bytes:
    return zlib.compress(data)


def decompress(data: bytes) -> bytes:
    """Inflate a deflate stream.

    Raises:
        DecompressionError: If the payload is corrupt or truncated
    """
    try:
        decompressor = zlib.decompressobj()
        result = decompressor.decompress(data) + decompressor.flush()
    except zlib.error as e:
        raise DecompressionError(f"Failed to decompress chunk: {e}", field="body") from e
    if not decompressor.eof:
        raise DecompressionError("Compressed chunk is truncated", field="body")
    return result


def decide(
    mode: "str | CompressionMode",
    sample_chunk: bytes,
    threshold: float = DEFAULT_THRESHOLD,
) -> CompressionDecision:
    """Decide whether an upload should compress its chunks.

    In ``auto`` mode the sample (the first chunk, or the whole file when it is
    smaller than a chunk) is trial-compressed once; compression is enabled only
    if ``compressed_size / original_size <= threshold``.

    Args:
        mode: ``always``, ``never`` or ``auto``
        sample_chunk: First chunk of the file
        threshold: Maximum acceptable compression ratio

    Returns:
        The decision applied uniformly to all chunks of the upload
    """
    mode = CompressionMode.parse(mode)

    if mode is CompressionMode.ALWAYS:
        return CompressionDecision(mode=mode, enabled=True, threshold=threshold)
    if mode is CompressionMode.NEVER:
        return CompressionDecision(mode=mode, enabled=False, threshold=threshold)

    if not sample_chunk:
        return CompressionDecision(mode=mode, enabled=False, threshold=threshold)

    compressed_size = len(compress(sample_chunk))
    ratio = compressed_size / len(sample_chunk)
    enabled = ratio <= threshold

    logger.debug(
        "Compression evaluation",
        extra={
            "original_size": len(sample_chunk),
            "compressed_size": compressed_size,
            "ratio": round(ratio, 4),
            "threshold": threshold,
            "enabled": enabled,
        },
    )

    return CompressionDecision(
        mode=mode, enabled=enabled, threshold=threshold, sample_ratio=ratio
    )
