#!/usr/bin/env python3
"""
SGU Voxel: Compression Strategy
===============================

Interchangeable body codecs selected by a one-byte tag at the start of the
compressed payload:

    0  NONE   identity (never valid inside a file with the compressed flag)
    1  RLE    run-length pairs: value (value_width bytes) + uint32 run count
    2  LZ4    LZ4 frame format (lz4.frame)
    3  ZLIB   deflate stream (zlib)

Compression always wraps the already laid out dense or sparse body bytes.
Decoders are bounded: output never exceeds MAX_DECOMPRESSED_SIZE, nor the
expected size when the caller knows it.

License: MIT
"""

import logging
import zlib
from enum import IntEnum
from typing import Optional

import lz4.frame
import numpy as np

from .errors import (
    CompressionStreamCorrupt,
    InconsistentCompressionFlag,
    UnknownCompressionAlgorithm,
)

logger = logging.getLogger(__name__)

# Upper bound on decompressed bytes when the expected size is unknown (1GB)
MAX_DECOMPRESSED_SIZE = 1024 * 1024 * 1024

# Largest run a single RLE pair can describe
MAX_RUN_LENGTH = 0xFFFFFFFF

DEFAULT_ZLIB_LEVEL = 6


class CompressionAlgorithm(IntEnum):
    """Algorithm tag stored in the first byte of a compressed payload"""
    NONE = 0
    RLE = 1
    LZ4 = 2
    ZLIB = 3

    @classmethod
    def from_name(cls, name: str) -> 'CompressionAlgorithm':
        """Look up an algorithm by case-insensitive name ('rle', 'lz4', ...)."""
        try:
            return cls[name.upper()]
        except KeyError:
            choices = ', '.join(a.name.lower() for a in cls)
            raise ValueError(f"Unknown compression algorithm '{name}' (choose from: {choices})")


def _unit_dtype(value_width: int, byte_order: str) -> np.dtype:
    if value_width not in (1, 2, 4):
        raise ValueError(f"value_width must be 1, 2 or 4, got {value_width}")
    return np.dtype(f'{byte_order}u{value_width}')


def _rle_pair_dtype(value_width: int, byte_order: str) -> np.dtype:
    return np.dtype([
        ('value', _unit_dtype(value_width, byte_order)),
        ('count', np.dtype(f'{byte_order}u4')),
    ])


# ============================================================================
# Run-length encoding
# ============================================================================

def rle_encode(data: bytes, value_width: int = 1, byte_order: str = '<') -> bytes:
    """
    Run-length encode ``data`` as (value, uint32 count) pairs.

    Args:
        data: Raw bytes, length must be a multiple of value_width
        value_width: Size of one value in bytes (1, 2 or 4)
        byte_order: '<' or '>' for the count and value fields

    Returns:
        Encoded pairs (without the algorithm tag)
    """
    unit = _unit_dtype(value_width, byte_order)
    if len(data) % value_width:
        raise ValueError(
            f"RLE input length {len(data)} is not a multiple of value_width {value_width}"
        )

    values = np.frombuffer(data, dtype=unit)
    if values.size == 0:
        return b''

    # Run boundaries: positions where the value changes
    starts = np.concatenate(([0], np.flatnonzero(values[1:] != values[:-1]) + 1))
    lengths = np.diff(np.concatenate((starts, [values.size]))).astype(np.int64)

    # Split runs that do not fit a uint32 count
    chunks = (lengths + MAX_RUN_LENGTH - 1) // MAX_RUN_LENGTH
    run_values = np.repeat(values[starts], chunks)
    counts = np.full(run_values.size, MAX_RUN_LENGTH, dtype=np.int64)
    last = np.cumsum(chunks) - 1
    counts[last] = lengths - (chunks - 1) * MAX_RUN_LENGTH

    pairs = np.empty(run_values.size, dtype=_rle_pair_dtype(value_width, byte_order))
    pairs['value'] = run_values
    pairs['count'] = counts
    return pairs.tobytes()


def rle_decode(stream: bytes, value_width: int = 1, byte_order: str = '<',
               limit: int = MAX_DECOMPRESSED_SIZE, base_offset: int = 0) -> bytes:
    """
    Replay run-length pairs until the stream is exhausted.

    Args:
        stream: Encoded pairs (without the algorithm tag)
        value_width: Size of one value in bytes
        byte_order: '<' or '>'
        limit: Maximum number of output bytes
        base_offset: Absolute file offset of ``stream`` (for error reports)

    Returns:
        Decoded bytes (at most ``limit``)

    Raises:
        CompressionStreamCorrupt: Partial pair, zero-length run or output
            exceeding ``limit``
    """
    pair_dtype = _rle_pair_dtype(value_width, byte_order)
    pair_size = pair_dtype.itemsize

    whole = len(stream) - len(stream) % pair_size
    if whole != len(stream):
        raise CompressionStreamCorrupt(
            f"RLE stream ends inside a run pair ({len(stream) - whole} stray bytes)",
            offset=base_offset + whole,
        )

    pairs = np.frombuffer(stream, dtype=pair_dtype)
    counts = pairs['count'].astype(np.int64)

    zero_runs = np.flatnonzero(counts == 0)
    if zero_runs.size:
        raise CompressionStreamCorrupt(
            "RLE stream contains a zero-length run",
            offset=base_offset + int(zero_runs[0]) * pair_size,
        )

    # Compared in values, not bytes, so the running total stays within int64
    produced = np.cumsum(counts)
    over = np.flatnonzero(produced > limit // value_width)
    if over.size:
        raise CompressionStreamCorrupt(
            f"RLE runs expand beyond {limit} bytes",
            offset=base_offset + int(over[0]) * pair_size,
        )

    return np.repeat(pairs['value'], counts).tobytes()


# ============================================================================
# General purpose codecs
# ============================================================================

def _lz4_decode(stream: bytes, limit: int, base_offset: int) -> bytes:
    decompressor = lz4.frame.LZ4FrameDecompressor()
    try:
        out = decompressor.decompress(stream, max_length=limit + 1)
    except RuntimeError as e:
        raise CompressionStreamCorrupt(f"LZ4 decompression failed: {e}", offset=base_offset)

    if len(out) > limit:
        raise CompressionStreamCorrupt(
            f"LZ4 stream expands beyond {limit} bytes", offset=base_offset
        )
    if not decompressor.eof:
        raise CompressionStreamCorrupt("LZ4 stream is truncated", offset=base_offset + len(stream))
    if decompressor.unused_data:
        raise CompressionStreamCorrupt(
            f"{len(decompressor.unused_data)} bytes after end of LZ4 frame",
            offset=base_offset + len(stream) - len(decompressor.unused_data),
        )
    return out


def _zlib_decode(stream: bytes, limit: int, base_offset: int) -> bytes:
    decompressor = zlib.decompressobj()
    try:
        out = decompressor.decompress(stream, limit + 1)
    except zlib.error as e:
        raise CompressionStreamCorrupt(f"zlib decompression failed: {e}", offset=base_offset)

    if len(out) > limit:
        raise CompressionStreamCorrupt(
            f"zlib stream expands beyond {limit} bytes", offset=base_offset
        )
    if not decompressor.eof:
        raise CompressionStreamCorrupt("zlib stream is truncated", offset=base_offset + len(stream))
    if decompressor.unused_data:
        raise CompressionStreamCorrupt(
            f"{len(decompressor.unused_data)} bytes after end of zlib stream",
            offset=base_offset + len(stream) - len(decompressor.unused_data),
        )
    return out


# ============================================================================
# Public API
# ============================================================================

def compress(data: bytes, algorithm: CompressionAlgorithm, value_width: int = 1,
             byte_order: str = '<', level: Optional[int] = None) -> bytes:
    """
    Wrap ``data`` in a compressed payload (tag byte + algorithm bytes).

    Args:
        data: Uncompressed body bytes
        algorithm: Codec to use
        value_width: Voxel value width, used by RLE
        byte_order: '<' or '>', used by RLE
        level: Optional codec level for LZ4/zlib

    Returns:
        Compressed payload
    """
    algorithm = CompressionAlgorithm(algorithm)

    if algorithm == CompressionAlgorithm.NONE:
        body = bytes(data)
    elif algorithm == CompressionAlgorithm.RLE:
        body = rle_encode(data, value_width, byte_order)
    elif algorithm == CompressionAlgorithm.LZ4:
        if level is None:
            body = lz4.frame.compress(data)
        else:
            body = lz4.frame.compress(data, compression_level=level)
    else:
        body = zlib.compress(data, DEFAULT_ZLIB_LEVEL if level is None else level)

    payload = bytes([algorithm.value]) + body
    logger.debug(
        f"{algorithm.name}: {len(data)} -> {len(payload)} bytes"
    )
    return payload


def payload_algorithm(payload: bytes, base_offset: int = 0) -> CompressionAlgorithm:
    """
    Read and validate the algorithm tag of a payload found in a compressed file.

    Raises:
        CompressionStreamCorrupt: Empty payload
        InconsistentCompressionFlag: Tag NONE
        UnknownCompressionAlgorithm: Unrecognised tag
    """
    if len(payload) == 0:
        raise CompressionStreamCorrupt("Compressed payload is missing its algorithm tag",
                                       offset=base_offset)
    tag = payload[0]
    try:
        algorithm = CompressionAlgorithm(tag)
    except ValueError:
        raise UnknownCompressionAlgorithm(f"Unknown compression algorithm tag {tag}",
                                          offset=base_offset)
    if algorithm == CompressionAlgorithm.NONE:
        raise InconsistentCompressionFlag(
            "Compressed flag is set but payload declares no compression",
            offset=base_offset,
        )
    return algorithm


def decompress(payload: bytes, value_width: int = 1, byte_order: str = '<',
               expected_size: Optional[int] = None, base_offset: int = 0) -> bytes:
    """
    Decode a compressed payload back to body bytes.

    The result never exceeds ``expected_size`` nor MAX_DECOMPRESSED_SIZE, so a
    header declaring a huge grid cannot force a huge allocation. A shorter
    result is returned as is and left to the body codec to reject.

    Args:
        payload: Tag byte followed by algorithm bytes
        value_width: Voxel value width, used by RLE
        byte_order: '<' or '>', used by RLE
        expected_size: Exact uncompressed size if known
        base_offset: Absolute file offset of the payload (for error reports)

    Returns:
        Uncompressed body bytes
    """
    algorithm = payload_algorithm(payload, base_offset)
    limit = MAX_DECOMPRESSED_SIZE
    if expected_size is not None:
        limit = min(expected_size, MAX_DECOMPRESSED_SIZE)
    stream = bytes(payload[1:])
    stream_offset = base_offset + 1

    if algorithm == CompressionAlgorithm.RLE:
        out = rle_decode(stream, value_width, byte_order, limit, stream_offset)
    elif algorithm == CompressionAlgorithm.LZ4:
        out = _lz4_decode(stream, limit, stream_offset)
    else:
        out = _zlib_decode(stream, limit, stream_offset)

    logger.debug(f"{algorithm.name}: {len(payload)} -> {len(out)} bytes")
    return out
