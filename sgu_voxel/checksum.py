#!/usr/bin/env python3
"""
SGU Voxel: Checksum Engine
==========================

CRC-32 (reflected polynomial 0xEDB88320, init 0xFFFFFFFF, final XOR
0xFFFFFFFF) over arbitrary byte ranges. This is the same CRC that zlib
implements, so zlib's table-driven routine is used directly.

License: MIT
"""

import zlib
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]


def crc32(data: BytesLike) -> int:
    """Return the CRC-32 of ``data`` as an unsigned 32-bit integer."""
    return zlib.crc32(data) & 0xFFFFFFFF


def verify_crc32(data: BytesLike, expected: int) -> bool:
    """Check ``data`` against a stored CRC (compared modulo 2**32)."""
    return crc32(data) == (expected & 0xFFFFFFFF)


def to_signed32(value: int) -> int:
    """Reinterpret an unsigned 32-bit value as signed (for int32 metadata)."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value
