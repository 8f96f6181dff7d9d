#!/usr/bin/env python3
"""
SGU Voxel: Body Codecs
======================

Dense layout:
    width*height*depth values of value_width bytes in row-major order,
    index = x + y*width + z*width*height.

Sparse layout:
    uint32 entry count, then per entry uint32 x, uint32 y, uint32 z and a
    value of value_width bytes. Entries need not be sorted or unique; a
    repeated coordinate takes the value of its last entry in file order.

Both layouts follow the file's byte order. Error offsets are absolute file
offsets when ``base_offset`` is given, otherwise None (a compressed body
has no meaningful file offset once decompressed).

License: MIT
"""

import struct
from typing import Dict, Optional

import numpy as np

from .errors import CoordinateOutOfBounds, TrailingBodyBytes, TruncatedBody
from .grid import Coordinate, VoxelGrid
from .header import MAX_UINT32, BodyEncoding, ContainerHeader

SPARSE_COUNT_SIZE = 4


def _at(base_offset: Optional[int], position: int) -> Optional[int]:
    return None if base_offset is None else base_offset + position


def file_value_dtype(value_width: int, byte_order: str = '<') -> np.dtype:
    return np.dtype(f'{byte_order}u{value_width}')


def sparse_entry_dtype(value_width: int, byte_order: str = '<') -> np.dtype:
    coord = np.dtype(f'{byte_order}u4')
    return np.dtype([
        ('x', coord),
        ('y', coord),
        ('z', coord),
        ('value', file_value_dtype(value_width, byte_order)),
    ])


# ============================================================================
# Dense
# ============================================================================

def encode_dense(grid: VoxelGrid, byte_order: str = '<') -> bytes:
    """Lay out every cell in row-major order."""
    array = grid.to_array()
    return array.astype(file_value_dtype(grid.value_width, byte_order), copy=False).tobytes()


def decode_dense(data: bytes, width: int, height: int, depth: int, value_width: int,
                 byte_order: str = '<', base_offset: Optional[int] = 0) -> VoxelGrid:
    """
    Decode a dense body of exactly width*height*depth*value_width bytes.

    Raises:
        TruncatedBody: Fewer bytes than the grid needs
        TrailingBodyBytes: More bytes than the grid needs
    """
    expected = width * height * depth * value_width
    if len(data) < expected:
        raise TruncatedBody(
            f"Dense body needs {expected} bytes, got {len(data)}",
            offset=_at(base_offset, len(data)),
        )
    if len(data) > expected:
        raise TrailingBodyBytes(
            f"{len(data) - expected} bytes after dense body of {expected} bytes",
            offset=_at(base_offset, expected),
        )

    values = np.frombuffer(data, dtype=file_value_dtype(value_width, byte_order))
    return VoxelGrid(width, height, depth, value_width, array=values.reshape(depth, height, width))


# ============================================================================
# Sparse
# ============================================================================

def encode_sparse(grid: VoxelGrid, byte_order: str = '<') -> bytes:
    """Write the non-zero cells of ``grid`` in row-major order."""
    dtype = sparse_entry_dtype(grid.value_width, byte_order)

    if grid.is_sparse:
        cells = list(grid.nonzero_entries())
        entries = np.empty(len(cells), dtype=dtype)
        if cells:
            columns = np.array(cells, dtype=np.uint64).T
            entries['x'], entries['y'], entries['z'], entries['value'] = columns
    else:
        array = grid.to_array()
        zs, ys, xs = np.nonzero(array)
        entries = np.empty(xs.size, dtype=dtype)
        entries['x'] = xs
        entries['y'] = ys
        entries['z'] = zs
        entries['value'] = array[zs, ys, xs]

    if entries.size > MAX_UINT32:
        raise ValueError(f"Too many non-zero voxels for a sparse body: {entries.size}")
    return struct.pack(byte_order + 'I', entries.size) + entries.tobytes()


def decode_sparse(data: bytes, width: int, height: int, depth: int, value_width: int,
                  byte_order: str = '<', base_offset: Optional[int] = 0) -> VoxelGrid:
    """
    Decode a sparse entry list into a sparse-backed grid.

    Raises:
        TruncatedBody: Missing count or fewer entries than declared
        TrailingBodyBytes: Bytes after the declared entries
        CoordinateOutOfBounds: An entry outside the grid
    """
    if len(data) < SPARSE_COUNT_SIZE:
        raise TruncatedBody(
            f"Sparse body needs a {SPARSE_COUNT_SIZE}-byte entry count, got {len(data)} bytes",
            offset=_at(base_offset, len(data)),
        )

    count = struct.unpack_from(byte_order + 'I', data, 0)[0]
    dtype = sparse_entry_dtype(value_width, byte_order)
    expected = SPARSE_COUNT_SIZE + count * dtype.itemsize
    if len(data) < expected:
        raise TruncatedBody(
            f"Sparse body declares {count} entries ({expected} bytes), got {len(data)} bytes",
            offset=_at(base_offset, len(data)),
        )
    if len(data) > expected:
        raise TrailingBodyBytes(
            f"{len(data) - expected} bytes after {count} sparse entries",
            offset=_at(base_offset, expected),
        )

    entries = np.frombuffer(data, dtype=dtype, count=count, offset=SPARSE_COUNT_SIZE)
    outside = np.flatnonzero(
        (entries['x'] >= width) | (entries['y'] >= height) | (entries['z'] >= depth)
    )
    if outside.size:
        index = int(outside[0])
        bad = entries[index]
        raise CoordinateOutOfBounds(
            f"Entry {index} at ({bad['x']}, {bad['y']}, {bad['z']}) "
            f"is outside {width}x{height}x{depth} grid",
            offset=_at(base_offset, SPARSE_COUNT_SIZE + index * dtype.itemsize),
        )

    cells: Dict[Coordinate, int] = {}
    for x, y, z, value in zip(entries['x'].tolist(), entries['y'].tolist(),
                              entries['z'].tolist(), entries['value'].tolist()):
        # Later entries overwrite earlier ones, zero included
        if value:
            cells[(x, y, z)] = value
        else:
            cells.pop((x, y, z), None)
    return VoxelGrid(width, height, depth, value_width, entries=cells)


# ============================================================================
# Dispatch
# ============================================================================

def encode_body(grid: VoxelGrid, encoding: BodyEncoding, byte_order: str = '<') -> bytes:
    if encoding == BodyEncoding.SPARSE:
        return encode_sparse(grid, byte_order)
    return encode_dense(grid, byte_order)


def decode_body(data: bytes, header: ContainerHeader,
                base_offset: Optional[int] = 0) -> VoxelGrid:
    """Decode uncompressed body bytes using the layout the header selects."""
    decode = decode_sparse if header.body_encoding == BodyEncoding.SPARSE else decode_dense
    return decode(data, header.width, header.height, header.depth, header.value_width,
                  header.byte_order, base_offset)
