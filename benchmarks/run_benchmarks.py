#!/usr/bin/env python3
"""
SGU Voxel Benchmark Suite
=========================

Compares file size and encode/decode time of every body encoding and
compression combination over synthetic voxel grids.

Usage:
    python run_benchmarks.py [--output results.json] [--quick]

License: MIT
"""

import argparse
import itertools
import json
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import List

import numpy as np

from sgu_voxel import (
    BodyEncoding,
    CompressionAlgorithm,
    EncodeOptions,
    VoxelGrid,
    decode_file,
    encode_file,
    __version__,
)


@dataclass
class BenchmarkResult:
    """Single benchmark result"""
    name: str
    encoding: str
    compression: str
    dense_size: int
    file_size: int
    ratio: float
    encode_ms: float
    decode_ms: float
    lossless: bool
    notes: str = ""


def benchmark_grid(name: str, grid: VoxelGrid, notes: str = "") -> List[BenchmarkResult]:
    """Run every encoding/compression combination on one grid"""
    results = []
    for encoding, algorithm in itertools.product(BodyEncoding, CompressionAlgorithm):
        options = EncodeOptions(encoding=encoding, compression=algorithm)

        start = time.perf_counter()
        data = encode_file(grid, {'name': name}, options)
        encode_ms = (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        restored, _ = decode_file(data)
        decode_ms = (time.perf_counter() - start) * 1000

        results.append(BenchmarkResult(
            name=name,
            encoding=encoding.value,
            compression=algorithm.name.lower(),
            dense_size=grid.nbytes,
            file_size=len(data),
            ratio=grid.nbytes / len(data),
            encode_ms=encode_ms,
            decode_ms=decode_ms,
            lossless=restored == grid,
            notes=notes,
        ))
    return results


def generate_test_grids() -> List[tuple]:
    """Generate test grids"""
    rng = np.random.default_rng(42)
    grids = []

    # 1. Empty volume (sparse and RLE should excel)
    grids.append(("empty_64", VoxelGrid.zeros(64, 64, 64), "All air"))

    # 2. Terrain: solid below a smooth height field
    size = 64
    x = np.linspace(0, 4 * np.pi, size)
    heights = (size / 2 + 8 * np.sin(x)[None, :] * np.cos(x)[:, None]).astype(int)
    z = np.arange(size)[:, None, None]
    terrain = (z < heights[None, :, :]).astype(np.uint8)
    grids.append(("terrain_64", VoxelGrid.from_array(terrain), "Height-field terrain"))

    # 3. Solid sphere of 16-bit material ids
    c = np.arange(size) - size / 2
    zz, yy, xx = np.meshgrid(c, c, c, indexing='ij')
    sphere = np.where(xx**2 + yy**2 + zz**2 < (size / 3) ** 2, 1024, 0).astype(np.uint16)
    grids.append(("sphere_64_u16", VoxelGrid.from_array(sphere), "Sphere, 16-bit ids"))

    # 4. Scattered points (sparse should excel)
    points = {}
    for _ in range(200):
        px, py, pz = rng.integers(0, 128, size=3).tolist()
        points[(px, py, pz)] = int(rng.integers(1, 255))
    grids.append(("scatter_128", VoxelGrid.from_entries(128, 128, 128, 1, points), "200 random voxels"))

    # 5. Random noise (compression should not help)
    noise = rng.integers(0, 256, size=(32, 32, 32), dtype=np.uint8)
    grids.append(("noise_32", VoxelGrid.from_array(noise), "Uniform random bytes"))

    # 6. 32-bit density field
    density = (np.abs(zz) * 1000).astype(np.uint32)
    grids.append(("density_64_u32", VoxelGrid.from_array(density), "Layered 32-bit values"))

    return grids


def run_benchmarks(quick: bool = False) -> List[BenchmarkResult]:
    """Run all benchmarks"""
    grids = generate_test_grids()

    if quick:
        grids = grids[:3]

    results = []
    print(f"Running {len(grids)} benchmarks...")
    print("-" * 80)

    for name, grid, notes in grids:
        print(f"Benchmarking: {name}...", end=" ", flush=True)
        grid_results = benchmark_grid(name, grid, notes)
        results.extend(grid_results)
        best = min(grid_results, key=lambda r: r.file_size)
        print(f"Smallest: {best.encoding}/{best.compression} ({best.ratio:.1f}x)")

    return results


def print_results_table(results: List[BenchmarkResult]):
    """Print results as formatted table"""
    print("\n" + "=" * 100)
    print("SGU Voxel Benchmark Results")
    print("=" * 100)
    print(f"sgu-voxel version: {__version__}")
    print("-" * 100)

    print(f"{'Name':<18} {'Encoding':<8} {'Codec':<6} {'Dense':>10} {'File':>10} "
          f"{'Ratio':>9} {'Enc ms':>8} {'Dec ms':>8} {'OK':>4}")
    print("-" * 100)

    for r in results:
        print(f"{r.name:<18} {r.encoding:<8} {r.compression:<6} {r.dense_size:>10} {r.file_size:>10} "
              f"{r.ratio:>8.1f}x {r.encode_ms:>8.1f} {r.decode_ms:>8.1f} {str(r.lossless):>4}")

    print("-" * 100)

    print("\nAverage ratio per combination:")
    combos = sorted({(r.encoding, r.compression) for r in results})
    for encoding, compression in combos:
        ratios = [r.ratio for r in results if (r.encoding, r.compression) == (encoding, compression)]
        print(f"  {encoding}/{compression}: {np.mean(ratios):.2f}x")


def main():
    parser = argparse.ArgumentParser(description='SGU Voxel Benchmark Suite')
    parser.add_argument('--output', '-o', type=str, help='Output JSON file')
    parser.add_argument('--quick', action='store_true', help='Run quick subset of benchmarks')
    args = parser.parse_args()

    results = run_benchmarks(quick=args.quick)

    print_results_table(results)

    if args.output:
        output_path = Path(args.output)
        with open(output_path, 'w') as f:
            json.dump([asdict(r) for r in results], f, indent=2)
        print(f"\nResults saved to: {output_path}")


if __name__ == '__main__':
    main()
