#!/usr/bin/env python3
"""
SGU Voxel: Metadata Codec
=========================

Variable-length key/typed-value section that follows the header.

Entry layout (byte order follows the file):
    - key_length:   uint16
    - type_tag:     uint8   (MetadataType)
    - value_length: uint32
    - key:          key_length bytes of UTF-8 (no terminator)
    - value:        value_length bytes, interpreted per type_tag

Duplicate keys resolve last-write-wins; the first occurrence keeps its
position in the returned mapping.

License: MIT
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterator, Mapping, Optional

import numpy as np

from .errors import InvalidMetadataType, TrailingMetadataBytes, TruncatedMetadata
from .header import HEADER_SIZE

ENTRY_PREFIX_SIZE = 7
MAX_KEY_LENGTH = 0xFFFF
MAX_VALUE_LENGTH = 0xFFFFFFFF
INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1


class MetadataType(IntEnum):
    """Type tag of a metadata value"""
    STRING = 0
    INTEGER = 1
    FLOAT = 2
    BINARY = 3
    BOOLEAN = 4


_FIXED_LENGTHS = {
    MetadataType.INTEGER: 4,
    MetadataType.FLOAT: 4,
    MetadataType.BOOLEAN: 1,
}


@dataclass(frozen=True)
class MetadataEntry:
    """One decoded entry, with the absolute offset it started at"""
    key: str
    type: MetadataType
    value: Any
    offset: int = 0


def metadata_type_of(value: Any) -> MetadataType:
    """Map a Python value to its wire type."""
    # bool is an int subclass, so it has to be tested first
    if isinstance(value, (bool, np.bool_)):
        return MetadataType.BOOLEAN
    if isinstance(value, (int, np.integer)):
        return MetadataType.INTEGER
    if isinstance(value, (float, np.floating)):
        return MetadataType.FLOAT
    if isinstance(value, str):
        return MetadataType.STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return MetadataType.BINARY
    raise TypeError(f"Unsupported metadata value type: {type(value).__name__}")


def _encode_value(key: str, value: Any, value_type: MetadataType, order: str) -> bytes:
    if value_type == MetadataType.STRING:
        return value.encode('utf-8')
    if value_type == MetadataType.INTEGER:
        value = int(value)
        if not INT32_MIN <= value <= INT32_MAX:
            raise ValueError(f"Metadata '{key}': integer {value} does not fit in 32 bits")
        return struct.pack(order + 'i', value)
    if value_type == MetadataType.FLOAT:
        try:
            return struct.pack(order + 'f', float(value))
        except (struct.error, OverflowError) as e:
            raise ValueError(f"Metadata '{key}': {e}")
    if value_type == MetadataType.BOOLEAN:
        return b'\x01' if value else b'\x00'
    return bytes(value)


def encode_metadata(metadata: Mapping[str, Any], byte_order: str = '<') -> bytes:
    """
    Serialize a metadata mapping, preserving the caller's key order.

    Args:
        metadata: Mapping of key to str/int/float/bytes/bool
        byte_order: '<' or '>'

    Returns:
        Encoded metadata section

    Raises:
        TypeError: Non-string key or unsupported value type
        ValueError: Key or value too long, integer outside int32
    """
    chunks = []
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise TypeError(f"Metadata keys must be str, got {type(key).__name__}")
        key_bytes = key.encode('utf-8')
        if len(key_bytes) > MAX_KEY_LENGTH:
            raise ValueError(f"Metadata key too long: {len(key_bytes)} bytes")

        value_type = metadata_type_of(value)
        value_bytes = _encode_value(key, value, value_type, byte_order)
        if len(value_bytes) > MAX_VALUE_LENGTH:
            raise ValueError(f"Metadata '{key}': value too long ({len(value_bytes)} bytes)")

        chunks.append(struct.pack(byte_order + 'HBI', len(key_bytes), value_type, len(value_bytes)))
        chunks.append(key_bytes)
        chunks.append(value_bytes)
    return b''.join(chunks)


def _decode_value(raw: bytes, value_type: MetadataType, order: str, offset: int) -> Any:
    expected = _FIXED_LENGTHS.get(value_type)
    if expected is not None and len(raw) != expected:
        raise InvalidMetadataType(
            f"{value_type.name} value must be {expected} bytes, got {len(raw)}",
            offset=offset,
        )

    if value_type == MetadataType.STRING:
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidMetadataType(f"Invalid UTF-8 in string value: {e}", offset=offset)
    if value_type == MetadataType.INTEGER:
        return struct.unpack(order + 'i', raw)[0]
    if value_type == MetadataType.FLOAT:
        return struct.unpack(order + 'f', raw)[0]
    if value_type == MetadataType.BOOLEAN:
        return raw != b'\x00'
    return raw


def iter_metadata(data: bytes, byte_order: str = '<', count: Optional[int] = None,
                  base_offset: int = HEADER_SIZE) -> Iterator[MetadataEntry]:
    """
    Yield entries from an encoded metadata section in file order.

    Args:
        data: Exactly the declared metadata bytes
        byte_order: '<' or '>'
        count: Number of entries expected, or None to read until the
            section is consumed
        base_offset: Absolute file offset of ``data`` (for error reports)

    Raises:
        TruncatedMetadata: An entry runs past the section end, or fewer
            than ``count`` entries fit
        TrailingMetadataBytes: Bytes left over after ``count`` entries
        InvalidMetadataType: Unknown tag or malformed value
    """
    data = bytes(data)
    size = len(data)
    pos = 0
    entries = 0

    while pos < size and (count is None or entries < count):
        if pos + ENTRY_PREFIX_SIZE > size:
            raise TruncatedMetadata(
                f"Entry header needs {ENTRY_PREFIX_SIZE} bytes, {size - pos} left",
                offset=base_offset + pos,
            )
        key_length, tag, value_length = struct.unpack_from(byte_order + 'HBI', data, pos)
        key_start = pos + ENTRY_PREFIX_SIZE
        value_start = key_start + key_length
        end = value_start + value_length
        if end > size:
            raise TruncatedMetadata(
                f"Entry of {end - pos} bytes exceeds metadata section ({size - pos} left)",
                offset=base_offset + pos,
            )

        try:
            value_type = MetadataType(tag)
        except ValueError:
            raise InvalidMetadataType(f"Unknown metadata type tag {tag}", offset=base_offset + pos + 2)

        try:
            key = data[key_start:value_start].decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidMetadataType(f"Invalid UTF-8 in metadata key: {e}", offset=base_offset + key_start)

        value = _decode_value(data[value_start:end], value_type, byte_order, base_offset + value_start)
        yield MetadataEntry(key, value_type, value, base_offset + pos)

        pos = end
        entries += 1

    if count is not None and entries < count:
        raise TruncatedMetadata(
            f"Expected {count} metadata entries, section holds {entries}",
            offset=base_offset + pos,
        )
    if pos < size:
        raise TrailingMetadataBytes(
            f"{size - pos} unread bytes after {entries} metadata entries",
            offset=base_offset + pos,
        )


def decode_metadata(data: bytes, byte_order: str = '<', count: Optional[int] = None,
                    base_offset: int = HEADER_SIZE) -> Dict[str, Any]:
    """Decode a metadata section into a key -> value dict (last write wins)."""
    result: Dict[str, Any] = {}
    for entry in iter_metadata(data, byte_order, count, base_offset):
        result[entry.key] = entry.value
    return result
