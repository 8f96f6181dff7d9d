#!/usr/bin/env python3
"""
SGU Voxel: Container Pipeline
=============================

Decode: header -> metadata -> (decompression) -> body.
Encode: body -> (compression) -> metadata -> header, so the header
checksum covers the final field values.

File layout:
    [0, 64)                      header
    [64, 64 + metadata_size)     metadata (only when has-metadata is set)
    [64 + metadata_size, data_offset)   padding, ignored
    [data_offset, end)           body, possibly a compressed payload

Codec errors are re-raised unchanged except for the ``stage`` attribute,
which records the pipeline step that produced them.

License: MIT
"""

import logging
import numbers
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Mapping, NamedTuple, Optional, Tuple

from .body import decode_body, encode_body
from .checksum import crc32, to_signed32, verify_crc32
from .compression import CompressionAlgorithm, compress, decompress
from .errors import (
    ChecksumMismatch,
    ContainerError,
    InvalidMetadataType,
    TrailingMetadataBytes,
    TruncatedBody,
    TruncatedMetadata,
)
from .grid import VoxelGrid
from .header import HEADER_SIZE, BodyEncoding, ContainerHeader, byte_order_prefix
from .metadata import INT32_MAX, decode_metadata, encode_metadata, iter_metadata

logger = logging.getLogger(__name__)

# Reserved metadata keys
DATA_CHECKSUM_KEY = 'dataChecksum'
UNCOMPRESSED_SIZE_KEY = 'uncompressedSize'

# Header field offsets referenced by layout errors
_OFFSET_DATA_OFFSET = 24
_OFFSET_METADATA_SIZE = 28


@dataclass(frozen=True)
class EncodeOptions:
    """
    Intent flags for ``encode_file``.

    Attributes:
        encoding: Dense or sparse body layout
        compression: Algorithm wrapping the body (NONE for a literal body)
        compression_level: Optional LZ4/zlib level
        big_endian: Write every multi-byte field big-endian
        data_checksum: Store the CRC-32 of the uncompressed body in the
            'dataChecksum' metadata entry
    """
    encoding: BodyEncoding = BodyEncoding.DENSE
    compression: CompressionAlgorithm = CompressionAlgorithm.NONE
    compression_level: Optional[int] = None
    big_endian: bool = False
    data_checksum: bool = False

    @property
    def byte_order(self) -> str:
        return byte_order_prefix(self.big_endian)


class DecodedContainer(NamedTuple):
    """Fully validated result of decoding a file"""
    grid: VoxelGrid
    metadata: Dict[str, Any]
    header: ContainerHeader


@contextmanager
def _stage(name: str):
    try:
        yield
    except ContainerError as e:
        if e.stage is None:
            e.stage = name
        raise


# ============================================================================
# Decode
# ============================================================================

def read_header(data: bytes) -> ContainerHeader:
    """Parse and validate only the 64-byte header."""
    with _stage('header'):
        return ContainerHeader.from_bytes(data)


def _metadata_range(data: bytes, header: ContainerHeader) -> Tuple[int, int]:
    if not header.has_metadata:
        if header.metadata_size:
            raise TrailingMetadataBytes(
                f"metadata_size is {header.metadata_size} but the has-metadata flag is clear",
                offset=_OFFSET_METADATA_SIZE,
            )
        start = end = HEADER_SIZE
    else:
        start, end = HEADER_SIZE, HEADER_SIZE + header.metadata_size

    if end > len(data):
        raise TruncatedMetadata(
            f"Metadata section ends at byte {end}, file has {len(data)} bytes",
            offset=len(data),
        )
    if header.data_offset < end:
        raise TruncatedMetadata(
            f"Body offset {header.data_offset} lies inside metadata ending at {end}",
            offset=_OFFSET_DATA_OFFSET,
        )
    return start, end


def _check_reserved_keys(metadata: Mapping[str, Any], base_offset: int) -> None:
    for key in (DATA_CHECKSUM_KEY, UNCOMPRESSED_SIZE_KEY):
        value = metadata.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise InvalidMetadataType(f"'{key}' must be an integer entry", offset=base_offset)
    size = metadata.get(UNCOMPRESSED_SIZE_KEY)
    if size is not None and size < 0:
        raise InvalidMetadataType(f"'{UNCOMPRESSED_SIZE_KEY}' must not be negative", offset=base_offset)


def _check_reserved_entries(entries: Mapping[str, Any], body: bytes) -> None:
    """Refuse reserved entries that would make the encoded file undecodable."""
    for key in (DATA_CHECKSUM_KEY, UNCOMPRESSED_SIZE_KEY):
        value = entries.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, numbers.Integral)):
            raise TypeError(f"'{key}' is reserved for an integer, got {type(value).__name__}")

    stored = entries.get(DATA_CHECKSUM_KEY)
    if stored is not None and not verify_crc32(body, int(stored)):
        raise ValueError(
            f"'{DATA_CHECKSUM_KEY}' 0x{int(stored) & 0xFFFFFFFF:08x} does not match the body "
            f"(0x{crc32(body):08x}); set EncodeOptions.data_checksum to compute it"
        )
    size = entries.get(UNCOMPRESSED_SIZE_KEY)
    if size is not None and int(size) != len(body):
        raise ValueError(
            f"'{UNCOMPRESSED_SIZE_KEY}' is {int(size)} but the body is {len(body)} bytes"
        )


def _read_metadata(data: bytes, header: ContainerHeader) -> Dict[str, Any]:
    with _stage('metadata'):
        start, end = _metadata_range(data, header)
        if start == end:
            return {}
        metadata = decode_metadata(data[start:end], header.byte_order, base_offset=start)
        _check_reserved_keys(metadata, start)
        return metadata


def decode_container(data: bytes) -> DecodedContainer:
    """
    Decode a complete .sgu file.

    Args:
        data: Whole file contents

    Returns:
        DecodedContainer(grid, metadata, header)

    Raises:
        ContainerError: Any validation failure, with ``stage`` set
    """
    if not isinstance(data, bytes):
        data = bytes(data)

    header = read_header(data)
    metadata = _read_metadata(data, header)

    with _stage('body'):
        if header.data_offset > len(data):
            raise TruncatedBody(
                f"Body offset {header.data_offset} is past end of file ({len(data)} bytes)",
                offset=len(data),
            )
    payload = bytes(data[header.data_offset:])

    if header.compressed:
        if header.body_encoding == BodyEncoding.DENSE:
            expected = header.dense_body_size
        else:
            expected = metadata.get(UNCOMPRESSED_SIZE_KEY)
        with _stage('compression'):
            body = decompress(payload, header.value_width, header.byte_order,
                              expected_size=expected, base_offset=header.data_offset)
        body_offset = None
    else:
        body = payload
        body_offset = header.data_offset

    with _stage('body'):
        stored = metadata.get(DATA_CHECKSUM_KEY)
        if stored is not None and not verify_crc32(body, stored):
            raise ChecksumMismatch(
                f"Body checksum mismatch (stored 0x{stored & 0xFFFFFFFF:08x}, "
                f"computed 0x{crc32(body):08x})",
                offset=header.data_offset,
            )
        grid = decode_body(body, header, body_offset)

    logger.debug(
        f"Decoded {grid!r} from {len(data)} bytes "
        f"({header.body_encoding.value}, compressed={header.compressed}, "
        f"{len(metadata)} metadata entries)"
    )
    return DecodedContainer(grid, metadata, header)


def decode_file(data: bytes) -> Tuple[VoxelGrid, Dict[str, Any]]:
    """
    Decode a .sgu file into its grid and metadata mapping.

    Example:
        >>> grid, metadata = decode_file(encode_file(grid, {'author': 'X'}))
    """
    container = decode_container(data)
    return container.grid, container.metadata


# ============================================================================
# Encode
# ============================================================================

def encode_file(grid: VoxelGrid, metadata: Optional[Mapping[str, Any]] = None,
                options: Optional[EncodeOptions] = None) -> bytes:
    """
    Encode a grid and metadata mapping into .sgu bytes.

    Args:
        grid: Grid to store
        metadata: Optional mapping of key -> str/int/float/bytes/bool;
            key order is preserved
        options: Body encoding, compression and byte order

    Returns:
        Complete file contents

    Raises:
        TypeError / ValueError: Unsupported metadata or option values, or a
            reserved entry (dataChecksum, uncompressedSize) that does not
            describe the encoded body
    """
    if not isinstance(grid, VoxelGrid):
        raise TypeError(f"Expected a VoxelGrid, got {type(grid).__name__}")
    options = options or EncodeOptions()
    encoding = BodyEncoding(options.encoding)
    algorithm = CompressionAlgorithm(options.compression)
    order = options.byte_order
    compressed = algorithm != CompressionAlgorithm.NONE

    body = encode_body(grid, encoding, order)

    entries = dict(metadata or {})
    if options.data_checksum:
        entries[DATA_CHECKSUM_KEY] = to_signed32(crc32(body))
        if compressed and encoding == BodyEncoding.SPARSE and len(body) <= INT32_MAX:
            entries[UNCOMPRESSED_SIZE_KEY] = len(body)
    _check_reserved_entries(entries, body)
    metadata_bytes = encode_metadata(entries, order)

    if compressed:
        payload = compress(body, algorithm, grid.value_width, order, options.compression_level)
    else:
        payload = body

    header = ContainerHeader.build(
        grid.width, grid.height, grid.depth, grid.value_width,
        encoding=encoding,
        compressed=compressed,
        big_endian=options.big_endian,
        metadata_size=len(metadata_bytes),
        has_metadata=bool(entries),
    )

    logger.debug(
        f"Encoded {grid!r} as {encoding.value}/{algorithm.name}: "
        f"body {len(body)} -> {len(payload)} bytes, metadata {len(metadata_bytes)} bytes"
    )
    return header.to_bytes() + metadata_bytes + payload


# ============================================================================
# Inspection
# ============================================================================

def read_info(data: bytes) -> Dict[str, Any]:
    """
    Describe a file from its header and metadata without decoding the body.

    Returns:
        Dictionary of header fields, metadata entries with their types, and
        the size of the body section
    """
    if not isinstance(data, bytes):
        data = bytes(data)
    header = read_header(data)
    with _stage('metadata'):
        start, end = _metadata_range(data, header)
        entries = list(iter_metadata(data[start:end], header.byte_order, base_offset=start))

    body_size = max(len(data) - header.data_offset, 0)
    info: Dict[str, Any] = {
        'version': header.version,
        'byte_order': 'big-endian' if header.big_endian else 'little-endian',
        'dimensions': f"{header.width}x{header.height}x{header.depth}",
        'value_width': header.value_width,
        'body_encoding': header.body_encoding.value,
        'compressed': header.compressed,
        'data_offset': header.data_offset,
        'metadata_size': header.metadata_size,
        'body_size': body_size,
        'file_size': len(data),
        'checksum': f"0x{header.checksum:08x}",
        'reserved_flags': header.reserved_flags,
        'metadata': {entry.key: (entry.type.name.lower(), entry.value) for entry in entries},
    }
    if header.compressed and body_size:
        tag = data[header.data_offset]
        try:
            info['compression'] = CompressionAlgorithm(tag).name.lower()
        except ValueError:
            info['compression'] = f"unknown ({tag})"
    if body_size:
        info['compression_ratio'] = header.dense_body_size / len(data)
    return info
