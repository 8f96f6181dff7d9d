#!/usr/bin/env python3
"""
SGU Voxel: Voxel Grid
=====================

In-memory voxel grid addressed by (x, y, z) with 0 <= x < width,
0 <= y < height, 0 <= z < depth.

A grid is backed either by a dense numpy array of shape (depth, height,
width), so that ``array[z, y, x]`` sits at row-major index
``x + y*width + z*width*height``, or by a dict of (x, y, z) -> value where
absent cells read as zero. The backing is a storage choice; grids compare
equal when their dimensions, value width and cell values agree.

License: MIT
"""

from typing import Dict, Iterator, Mapping, Optional, Tuple

import numpy as np

from .header import MAX_UINT32, MAX_UINT64, VALID_VALUE_WIDTHS

Coordinate = Tuple[int, int, int]

VALUE_DTYPES = {
    1: np.dtype(np.uint8),
    2: np.dtype(np.uint16),
    4: np.dtype(np.uint32),
}


def value_dtype(value_width: int) -> np.dtype:
    """Native unsigned dtype for a value width."""
    try:
        return VALUE_DTYPES[value_width]
    except KeyError:
        raise ValueError(f"value_width must be one of {VALID_VALUE_WIDTHS}, got {value_width}")


def _check_shape(width: int, height: int, depth: int, value_width: int) -> None:
    for name, value in (('width', width), ('height', height), ('depth', depth)):
        if not isinstance(value, (int, np.integer)) or isinstance(value, bool):
            raise TypeError(f"{name} must be an integer")
        if not 0 < value <= MAX_UINT32:
            raise ValueError(f"{name} must be in 1..{MAX_UINT32}, got {value}")
    value_dtype(value_width)
    if int(width) * int(height) * int(depth) * value_width > MAX_UINT64:
        raise ValueError(f"grid {width}x{height}x{depth} overflows a 64-bit size")


class VoxelGrid:
    """
    Voxel grid with a dense or sparse backing.

    Build grids with ``from_array``, ``from_entries`` or ``zeros``. Grids are
    read-only once constructed and never share the array or dict they were
    built from.

    Example:
        >>> grid = VoxelGrid.from_entries(100, 100, 100, 1, {(5, 5, 5): 255})
        >>> grid.get(5, 5, 5), grid.get(0, 0, 0)
        (255, 0)
    """

    def __init__(self, width: int, height: int, depth: int, value_width: int,
                 array: Optional[np.ndarray] = None,
                 entries: Optional[Dict[Coordinate, int]] = None):
        _check_shape(width, height, depth, value_width)
        if (array is None) == (entries is None):
            raise ValueError("VoxelGrid needs exactly one of array or entries")

        self._width = int(width)
        self._height = int(height)
        self._depth = int(depth)
        self._value_width = value_width
        self._array = None
        self._entries = None

        if array is not None:
            if array.shape != (self._depth, self._height, self._width):
                raise ValueError(
                    f"array shape {array.shape} does not match (depth, height, width) "
                    f"= {(self._depth, self._height, self._width)}"
                )
            self._array = np.array(array, dtype=value_dtype(value_width))
            self._array.flags.writeable = False
        else:
            self._entries = dict(entries)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, array: np.ndarray, value_width: Optional[int] = None) -> 'VoxelGrid':
        """
        Build a dense grid from an array of shape (depth, height, width).

        Args:
            array: 3-D array of non-negative integers
            value_width: 1, 2 or 4; defaults to the array's itemsize

        Raises:
            ValueError: Wrong dimensionality or values that do not fit
        """
        array = np.asarray(array)
        if array.ndim != 3:
            raise ValueError(f"Expected a 3-D array (depth, height, width), got {array.ndim}-D")
        if value_width is None:
            value_width = array.dtype.itemsize if array.dtype.itemsize in VALID_VALUE_WIDTHS else 4
        dtype = value_dtype(value_width)

        if array.dtype != dtype and array.size:
            if not np.issubdtype(array.dtype, np.integer) and not np.issubdtype(array.dtype, np.bool_):
                raise ValueError(f"Voxel values must be integers, got dtype {array.dtype}")
            info = np.iinfo(dtype)
            if array.min() < 0 or array.max() > info.max:
                raise ValueError(f"Voxel values do not fit in {value_width} byte(s)")

        depth, height, width = array.shape
        return cls(width, height, depth, value_width, array=array)

    @classmethod
    def from_entries(cls, width: int, height: int, depth: int, value_width: int,
                     entries: Mapping[Coordinate, int]) -> 'VoxelGrid':
        """
        Build a sparse grid from a mapping of (x, y, z) -> value.

        Zero values are dropped; they read back as zero anyway.

        Raises:
            IndexError: Coordinate outside the grid
            ValueError: Value that does not fit the value width
        """
        _check_shape(width, height, depth, value_width)
        limit = 1 << (8 * value_width)
        cells: Dict[Coordinate, int] = {}
        for (x, y, z), value in entries.items():
            if not (0 <= x < width and 0 <= y < height and 0 <= z < depth):
                raise IndexError(f"Coordinate {(x, y, z)} outside {width}x{height}x{depth} grid")
            value = int(value)
            if not 0 <= value < limit:
                raise ValueError(f"Value {value} at {(x, y, z)} does not fit in {value_width} byte(s)")
            if value:
                cells[(int(x), int(y), int(z))] = value
        return cls(width, height, depth, value_width, entries=cells)

    @classmethod
    def zeros(cls, width: int, height: int, depth: int, value_width: int = 1,
              sparse: bool = False) -> 'VoxelGrid':
        """Empty grid; sparse grids cost nothing regardless of size."""
        if sparse:
            return cls(width, height, depth, value_width, entries={})
        return cls(width, height, depth, value_width,
                   array=np.zeros((depth, height, width), dtype=value_dtype(value_width)))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def value_width(self) -> int:
        return self._value_width

    @property
    def dtype(self) -> np.dtype:
        return value_dtype(self._value_width)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """(width, height, depth)"""
        return (self._width, self._height, self._depth)

    @property
    def cell_count(self) -> int:
        return self._width * self._height * self._depth

    @property
    def nbytes(self) -> int:
        """Size of the grid as a dense body."""
        return self.cell_count * self._value_width

    @property
    def is_sparse(self) -> bool:
        return self._entries is not None

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, x: int, y: int, z: int) -> int:
        """Value at (x, y, z); absent sparse cells read as 0."""
        if not (0 <= x < self._width and 0 <= y < self._height and 0 <= z < self._depth):
            raise IndexError(
                f"Coordinate {(x, y, z)} outside {self._width}x{self._height}x{self._depth} grid"
            )
        if self._entries is not None:
            return self._entries.get((x, y, z), 0)
        return int(self._array[z, y, x])

    def __getitem__(self, coordinate: Coordinate) -> int:
        return self.get(*coordinate)

    def to_array(self) -> np.ndarray:
        """Dense array of shape (depth, height, width)."""
        if self._array is not None:
            return self._array
        array = np.zeros((self._depth, self._height, self._width), dtype=self.dtype)
        for (x, y, z), value in self._entries.items():
            array[z, y, x] = value
        array.flags.writeable = False
        return array

    def nonzero_entries(self) -> Iterator[Tuple[int, int, int, int]]:
        """Yield (x, y, z, value) for non-zero cells in row-major order."""
        if self._entries is not None:
            ordered = sorted(self._entries.items(), key=lambda item: (item[0][2], item[0][1], item[0][0]))
            for (x, y, z), value in ordered:
                if value:
                    yield x, y, z, value
            return
        zs, ys, xs = np.nonzero(self._array)
        values = self._array[zs, ys, xs]
        for x, y, z, value in zip(xs.tolist(), ys.tolist(), zs.tolist(), values.tolist()):
            yield x, y, z, value

    def count_nonzero(self) -> int:
        if self._entries is not None:
            return sum(1 for value in self._entries.values() if value)
        return int(np.count_nonzero(self._array))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VoxelGrid):
            return NotImplemented
        if self.shape != other.shape or self._value_width != other._value_width:
            return False
        if self.is_sparse and other.is_sparse:
            return list(self.nonzero_entries()) == list(other.nonzero_entries())
        return bool(np.array_equal(self.to_array(), other.to_array()))

    __hash__ = None

    def __repr__(self) -> str:
        backing = 'sparse' if self.is_sparse else 'dense'
        return (
            f"VoxelGrid({self._width}x{self._height}x{self._depth}, "
            f"value_width={self._value_width}, {backing})"
        )
