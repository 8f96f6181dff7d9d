#!/usr/bin/env python3
"""
SGU Voxel: Header Codec
=======================

Fixed 64-byte header at the start of every .sgu file.

Binary layout (offsets in bytes):
    - magic:         4 bytes  "SGU " (little-endian) or " UGS" (big-endian)
    - version:       uint16
    - flags:         uint16   bit0 compressed, bit1 sparse, bit2 big-endian,
                              bit3 has-metadata, others reserved
    - width:         uint32
    - height:        uint32
    - depth:         uint32
    - voxel_size:    uint32   1, 2 or 4
    - data_offset:   uint32   start of body
    - metadata_size: uint32   length of metadata section (starts at 64)
    - checksum:      uint32   CRC-32 of bytes [0, 32)
    - reserved:      28 bytes, written as zero, ignored on read

Compatibility:
    - All multi-byte fields follow the big-endian flag; the magic is the
      32-bit value whose little-endian bytes spell "SGU ", so the byte order
      is known before any other field is read
    - Versions up to SUPPORTED_VERSION are accepted; unknown flag bits are
      preserved, not rejected

License: MIT
"""

import struct
from dataclasses import dataclass
from enum import Enum, IntFlag

from .checksum import crc32
from .errors import (
    ChecksumMismatch,
    InvalidDimensions,
    InvalidMagic,
    TruncatedHeader,
    UnsupportedVersion,
)


# ============================================================================
# Format Constants
# ============================================================================

MAGIC = b'SGU '
MAGIC_SWAPPED = MAGIC[::-1]
SUPPORTED_VERSION = 1

HEADER_SIZE = 64
CHECKSUM_OFFSET = 32
RESERVED_SIZE = 28

VALID_VALUE_WIDTHS = (1, 2, 4)
MAX_UINT32 = 0xFFFFFFFF
MAX_UINT64 = 0xFFFFFFFFFFFFFFFF

# magic, version, flags, width, height, depth, voxel_size,
# data_offset, metadata_size, checksum, reserved
_LAYOUT = '4sHHIIIIIII28s'

# Field offsets used in error reports
_OFFSET_VERSION = 4
_OFFSET_FLAGS = 6
_OFFSET_WIDTH = 8
_OFFSET_VOXEL_SIZE = 20


class HeaderFlags(IntFlag):
    """Bits of the header flags field"""
    COMPRESSED = 0x0001
    SPARSE = 0x0002
    BIG_ENDIAN = 0x0004
    HAS_METADATA = 0x0008


KNOWN_FLAGS = (
    HeaderFlags.COMPRESSED | HeaderFlags.SPARSE
    | HeaderFlags.BIG_ENDIAN | HeaderFlags.HAS_METADATA
)


class BodyEncoding(Enum):
    """Body layout, selected by the sparse flag"""
    DENSE = 'dense'
    SPARSE = 'sparse'


def byte_order_prefix(big_endian: bool) -> str:
    """struct/numpy byte order prefix for a file."""
    return '>' if big_endian else '<'


# ============================================================================
# Header
# ============================================================================

@dataclass(frozen=True)
class ContainerHeader:
    """
    Parsed .sgu header.

    On the encode path build instances with ``ContainerHeader.build`` and
    serialize with ``to_bytes``, which always computes a fresh checksum;
    the ``checksum`` field only records what was read from a file.
    """
    width: int
    height: int
    depth: int
    value_width: int
    flags: int = 0
    version: int = SUPPORTED_VERSION
    data_offset: int = HEADER_SIZE
    metadata_size: int = 0
    checksum: int = 0

    @classmethod
    def build(cls, width: int, height: int, depth: int, value_width: int,
              encoding: BodyEncoding = BodyEncoding.DENSE,
              compressed: bool = False,
              big_endian: bool = False,
              metadata_size: int = 0,
              has_metadata: bool = False) -> 'ContainerHeader':
        """Derive a header from the intent flags of an encode call."""
        flags = HeaderFlags(0)
        if compressed:
            flags |= HeaderFlags.COMPRESSED
        if encoding == BodyEncoding.SPARSE:
            flags |= HeaderFlags.SPARSE
        if big_endian:
            flags |= HeaderFlags.BIG_ENDIAN
        if has_metadata or metadata_size:
            flags |= HeaderFlags.HAS_METADATA

        return cls(
            width=width,
            height=height,
            depth=depth,
            value_width=value_width,
            flags=int(flags),
            data_offset=HEADER_SIZE + metadata_size,
            metadata_size=metadata_size,
        )

    @property
    def compressed(self) -> bool:
        return bool(self.flags & HeaderFlags.COMPRESSED)

    @property
    def body_encoding(self) -> BodyEncoding:
        if self.flags & HeaderFlags.SPARSE:
            return BodyEncoding.SPARSE
        return BodyEncoding.DENSE

    @property
    def big_endian(self) -> bool:
        return bool(self.flags & HeaderFlags.BIG_ENDIAN)

    @property
    def byte_order(self) -> str:
        return byte_order_prefix(self.big_endian)

    @property
    def has_metadata(self) -> bool:
        return bool(self.flags & HeaderFlags.HAS_METADATA)

    @property
    def reserved_flags(self) -> int:
        """Flag bits this implementation does not interpret."""
        return self.flags & ~int(KNOWN_FLAGS) & 0xFFFF

    @property
    def cell_count(self) -> int:
        return self.width * self.height * self.depth

    @property
    def dense_body_size(self) -> int:
        """Exact size of an uncompressed dense body."""
        return self.cell_count * self.value_width

    def to_bytes(self) -> bytes:
        """
        Serialize to 64 bytes with a freshly computed checksum.

        Raises:
            ValueError: If a field does not fit its on-disk width or the
                dimensions are invalid
        """
        _check_dimensions(self.width, self.height, self.depth, self.value_width, ValueError)
        for name in ('data_offset', 'metadata_size'):
            value = getattr(self, name)
            if not 0 <= value <= MAX_UINT32:
                raise ValueError(f"{name} out of uint32 range: {value}")
        if not 0 <= self.flags <= 0xFFFF:
            raise ValueError(f"flags out of uint16 range: {self.flags}")
        if not 0 <= self.version <= 0xFFFF:
            raise ValueError(f"version out of uint16 range: {self.version}")

        order = self.byte_order
        magic = MAGIC_SWAPPED if self.big_endian else MAGIC
        prefix = struct.pack(
            order + '4sHHIIIIII',
            magic,
            self.version,
            self.flags,
            self.width,
            self.height,
            self.depth,
            self.value_width,
            self.data_offset,
            self.metadata_size,
        )
        checksum = crc32(prefix)
        return prefix + struct.pack(order + 'I', checksum) + b'\x00' * RESERVED_SIZE

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ContainerHeader':
        """
        Parse and validate a header.

        Checks run in a fixed order and the first failure wins: signature,
        length, a signature swapped to the other byte order (detected by the
        checksum only matching under that order), version, dimensions, value
        width, checksum, and finally agreement between the signature and the
        big-endian flag.

        Args:
            data: At least the first 64 bytes of a file

        Returns:
            Parsed ContainerHeader

        Raises:
            InvalidMagic, TruncatedHeader, UnsupportedVersion,
            InvalidDimensions, ChecksumMismatch
        """
        magic = bytes(data[:4])
        if magic == MAGIC:
            order = '<'
        elif magic == MAGIC_SWAPPED:
            order = '>'
        else:
            raise InvalidMagic(f"Not an SGU voxel file (magic: {magic!r})", offset=0)

        if len(data) < HEADER_SIZE:
            raise TruncatedHeader(
                f"Data too short for header: {len(data)} bytes (need {HEADER_SIZE})",
                offset=len(data),
            )

        if _signature_swapped(data, order):
            raise InvalidMagic(
                f"Signature {magic!r} does not match the byte order the header was written in",
                offset=0,
            )

        (_, version, flags, width, height, depth, value_width,
         data_offset, metadata_size, checksum, _) = struct.unpack(
            order + _LAYOUT, bytes(data[:HEADER_SIZE])
        )

        if version > SUPPORTED_VERSION:
            raise UnsupportedVersion(
                f"Format version {version} is newer than supported version {SUPPORTED_VERSION}",
                offset=_OFFSET_VERSION,
            )

        _check_dimensions(width, height, depth, value_width, InvalidDimensions)

        computed = crc32(bytes(data[:CHECKSUM_OFFSET]))
        if computed != checksum:
            raise ChecksumMismatch(
                f"Header checksum mismatch (stored 0x{checksum:08x}, computed 0x{computed:08x})",
                offset=CHECKSUM_OFFSET,
            )

        if bool(flags & HeaderFlags.BIG_ENDIAN) != (order == '>'):
            raise InvalidMagic(
                "Signature byte order disagrees with the big-endian flag",
                offset=_OFFSET_FLAGS,
            )

        return cls(
            width=width,
            height=height,
            depth=depth,
            value_width=value_width,
            flags=flags,
            version=version,
            data_offset=data_offset,
            metadata_size=metadata_size,
            checksum=checksum,
        )


def _signature_swapped(data: bytes, order: str) -> bool:
    """True if the header only checksums when read with the other signature."""
    prefix = bytes(data[:CHECKSUM_OFFSET])
    if crc32(prefix) == struct.unpack_from(order + 'I', data, CHECKSUM_OFFSET)[0]:
        return False
    other_order, other_magic = ('>', MAGIC_SWAPPED) if order == '<' else ('<', MAGIC)
    stored = struct.unpack_from(other_order + 'I', data, CHECKSUM_OFFSET)[0]
    return crc32(other_magic + prefix[4:]) == stored


def _check_dimensions(width: int, height: int, depth: int, value_width: int, error) -> None:
    for index, (name, value) in enumerate((('width', width), ('height', height), ('depth', depth))):
        if value <= 0 or value > MAX_UINT32:
            raise _make_error(error, f"{name} must be in 1..{MAX_UINT32}, got {value}",
                              _OFFSET_WIDTH + 4 * index)
    if value_width not in VALID_VALUE_WIDTHS:
        raise _make_error(error, f"voxel size must be 1, 2 or 4, got {value_width}",
                          _OFFSET_VOXEL_SIZE)
    if width * height * depth * value_width > MAX_UINT64:
        raise _make_error(error, f"grid {width}x{height}x{depth} overflows a 64-bit size",
                          _OFFSET_WIDTH)


def _make_error(error, message: str, offset: int) -> Exception:
    if error is InvalidDimensions:
        return InvalidDimensions(message, offset=offset)
    return error(message)
