#!/usr/bin/env python3
"""
SGU Voxel Command Line Interface
================================

Usage:
    sgu-voxel pack <input.npy> [-o <output>] [--sparse] [--compression ALG]
                   [--big-endian] [--checksum] [--meta KEY=VALUE ...]
    sgu-voxel unpack <input.sgu> [-o <output.npy>]
    sgu-voxel info <file>
    sgu-voxel verify <file>
    sgu-voxel benchmark <file>

License: MIT
"""

import argparse
import itertools
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

import numpy as np

from . import __version__
from .compression import CompressionAlgorithm
from .container import (
    DATA_CHECKSUM_KEY,
    UNCOMPRESSED_SIZE_KEY,
    EncodeOptions,
    decode_container,
    encode_file,
    read_info,
)
from .errors import ContainerError
from .grid import VoxelGrid
from .header import BodyEncoding


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='sgu-voxel',
        description='SGU Voxel: voxel container format tool'
    )
    parser.add_argument('--version', action='version',
                        version=f'sgu-voxel {__version__}')
    parser.add_argument('--debug', action='store_true',
                        help='Show debug logs and full stack trace on error')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Pack command
    pack_parser = subparsers.add_parser('pack', help='Pack a 3-D .npy array (depth, height, width) into .sgu')
    pack_parser.add_argument('input', help='Input .npy file')
    pack_parser.add_argument('-o', '--output', help='Output .sgu file')
    pack_parser.add_argument('--sparse', action='store_true', help='Use the sparse entry-list body')
    pack_parser.add_argument('--compression', default='none',
                             choices=[a.name.lower() for a in CompressionAlgorithm],
                             help='Body compression algorithm')
    pack_parser.add_argument('--level', type=int, help='Compression level (lz4/zlib)')
    pack_parser.add_argument('--value-width', type=int, choices=[1, 2, 4],
                             help='Bytes per voxel (default: from array dtype)')
    pack_parser.add_argument('--big-endian', action='store_true', help='Write big-endian fields')
    pack_parser.add_argument('--checksum', action='store_true', help='Store a body checksum')
    pack_parser.add_argument('--meta', action='append', default=[], metavar='KEY=VALUE',
                             help='Metadata entry (repeatable)')

    # Unpack command
    unpack_parser = subparsers.add_parser('unpack', help='Unpack .sgu into a dense .npy array')
    unpack_parser.add_argument('input', help='Input .sgu file')
    unpack_parser.add_argument('-o', '--output', help='Output .npy file')

    # Info command
    info_parser = subparsers.add_parser('info', help='Show .sgu header and metadata')
    info_parser.add_argument('file', help='.sgu file to inspect')

    # Verify command
    verify_parser = subparsers.add_parser('verify', help='Fully decode and validate a .sgu file')
    verify_parser.add_argument('file', help='.sgu file to verify')

    # Benchmark command
    benchmark_parser = subparsers.add_parser('benchmark', help='Compare body encodings and compression')
    benchmark_parser.add_argument('file', help='.sgu file to re-encode')

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG,
                            format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    try:
        if args.command == 'pack':
            cmd_pack(args)
        elif args.command == 'unpack':
            cmd_unpack(args)
        elif args.command == 'info':
            cmd_info(args)
        elif args.command == 'verify':
            cmd_verify(args)
        elif args.command == 'benchmark':
            cmd_benchmark(args)
    except Exception as e:
        if args.debug:
            raise  # Show full stack trace for debugging
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def parse_meta(items: List[str]) -> Dict[str, Any]:
    """Parse KEY=VALUE pairs; values become int, float, bool or str."""
    metadata: Dict[str, Any] = {}
    for item in items:
        key, sep, raw = item.partition('=')
        if not sep or not key:
            raise ValueError(f"Metadata must be KEY=VALUE, got '{item}'")
        if raw.lower() in ('true', 'false'):
            metadata[key] = raw.lower() == 'true'
            continue
        for convert in (int, float):
            try:
                metadata[key] = convert(raw)
                break
            except ValueError:
                continue
        else:
            metadata[key] = raw
    return metadata


def _read_bytes(path: Path) -> bytes:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    with open(path, 'rb') as f:
        return f.read()


def cmd_pack(args):
    """Pack a numpy array into .sgu"""
    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else input_path.with_suffix('.sgu')

    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    grid = VoxelGrid.from_array(np.load(input_path), value_width=args.value_width)
    options = EncodeOptions(
        encoding=BodyEncoding.SPARSE if args.sparse else BodyEncoding.DENSE,
        compression=CompressionAlgorithm.from_name(args.compression),
        compression_level=args.level,
        big_endian=args.big_endian,
        data_checksum=args.checksum,
    )
    data = encode_file(grid, parse_meta(args.meta), options)

    with open(output_path, 'wb') as f:
        f.write(data)

    ratio = grid.nbytes / len(data)
    print(f"Packed: {input_path}")
    print(f"  Grid:   {grid.width}x{grid.height}x{grid.depth} x {grid.value_width} byte(s)")
    print(f"  Dense:  {grid.nbytes:,} bytes")
    print(f"  File:   {len(data):,} bytes")
    print(f"  Ratio:  {ratio:.1f}x")
    print(f"  Output: {output_path}")


def cmd_unpack(args):
    """Unpack .sgu into a dense .npy array"""
    input_path = Path(args.input)
    output_path = Path(args.output) if args.output else input_path.with_suffix('.npy')

    container = decode_container(_read_bytes(input_path))
    np.save(output_path, container.grid.to_array())

    print(f"Unpacked: {input_path}")
    print(f"  Output:   {output_path}")
    print(f"  Shape:    {container.grid.to_array().shape} (depth, height, width)")
    print(f"  Metadata: {len(container.metadata)} entries")


def cmd_info(args):
    """Show .sgu file information"""
    info = read_info(_read_bytes(Path(args.file)))

    print(f"SGU Voxel File: {args.file}")
    print("-" * 50)
    for key, value in info.items():
        if key == 'metadata':
            print(f"  {key}:")
            for k, (kind, v) in value.items():
                print(f"    {k} ({kind}): {v!r}")
        else:
            print(f"  {key}: {value}")


def cmd_verify(args):
    """Decode a file end to end and report the first problem"""
    data = _read_bytes(Path(args.file))
    try:
        container = decode_container(data)
    except ContainerError as e:
        print(f"FAILED: {e.code} in {e.stage} stage"
              + (f" at byte {e.offset}" if e.offset is not None else ""))
        print(f"  {e.message}")
        sys.exit(2)

    print(f"OK: {args.file}")
    print(f"  Grid:     {container.grid!r}")
    print(f"  Non-zero: {container.grid.count_nonzero():,}")
    print(f"  Metadata: {len(container.metadata)} entries")


def cmd_benchmark(args):
    """Re-encode a file with every body encoding and compression combination"""
    data = _read_bytes(Path(args.file))
    container = decode_container(data)
    grid = container.grid
    # Reserved entries describe one particular body; they are recomputed per encoding
    checksummed = DATA_CHECKSUM_KEY in container.metadata
    metadata = {k: v for k, v in container.metadata.items()
                if k not in (DATA_CHECKSUM_KEY, UNCOMPRESSED_SIZE_KEY)}

    print(f"Benchmark: {args.file}")
    print(f"  Grid:       {grid!r}")
    print(f"  Dense size: {grid.nbytes:,} bytes")
    print("-" * 50)

    results = {}
    for encoding, algorithm in itertools.product(BodyEncoding, CompressionAlgorithm):
        options = EncodeOptions(encoding=encoding, compression=algorithm,
                                big_endian=container.header.big_endian,
                                data_checksum=checksummed)
        start = time.perf_counter()
        encoded = encode_file(grid, metadata, options)
        encode_ms = (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        restored = decode_container(encoded).grid
        decode_ms = (time.perf_counter() - start) * 1000

        name = f"{encoding.value}/{algorithm.name.lower()}"
        results[name] = len(encoded)
        print(f"  {name}:")
        print(f"    Size:     {len(encoded):,} bytes")
        print(f"    Ratio:    {grid.nbytes / len(encoded):.1f}x")
        print(f"    Encode:   {encode_ms:.1f} ms")
        print(f"    Decode:   {decode_ms:.1f} ms")
        print(f"    Lossless: {restored == grid}")

    print("-" * 50)
    print(f"  Smallest: {min(results, key=results.get)}")


if __name__ == '__main__':
    main()
