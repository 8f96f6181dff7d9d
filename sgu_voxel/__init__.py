"""
SGU Voxel: Voxel Container Format
=================================

Read and write .sgu voxel files: a fixed 64-byte checksummed header, an
optional typed metadata section and a dense or sparse body, optionally
compressed with run-length, LZ4 or zlib encoding.

The core is a pure bytes-in/bytes-out transformation: it never opens files
and holds no shared mutable state, so independent files can be decoded or
encoded in parallel.

Example:
    >>> import numpy as np
    >>> from sgu_voxel import VoxelGrid, EncodeOptions, encode_file, decode_file
    >>> grid = VoxelGrid.from_array(np.arange(1, 9, dtype=np.uint8).reshape(2, 2, 2))
    >>> data = encode_file(grid, {'author': 'X'})
    >>> restored, metadata = decode_file(data)
    >>> restored.get(1, 1, 1)
    8

License: MIT
"""

from .checksum import crc32, verify_crc32

from .compression import (
    CompressionAlgorithm,
    MAX_DECOMPRESSED_SIZE,
    compress,
    decompress,
)

from .header import (
    BodyEncoding,
    ContainerHeader,
    HeaderFlags,
    HEADER_SIZE,
    MAGIC,
    SUPPORTED_VERSION,
)

from .metadata import (
    MetadataEntry,
    MetadataType,
    decode_metadata,
    encode_metadata,
)

from .grid import VoxelGrid

from .body import decode_body, encode_body

from .container import (
    DATA_CHECKSUM_KEY,
    UNCOMPRESSED_SIZE_KEY,
    DecodedContainer,
    EncodeOptions,
    decode_container,
    decode_file,
    encode_file,
    read_header,
    read_info,
)

from .errors import (
    ContainerError,
    InvalidMagic,
    TruncatedHeader,
    UnsupportedVersion,
    InvalidDimensions,
    ChecksumMismatch,
    TruncatedMetadata,
    TrailingMetadataBytes,
    InvalidMetadataType,
    TruncatedBody,
    TrailingBodyBytes,
    CoordinateOutOfBounds,
    InconsistentCompressionFlag,
    UnknownCompressionAlgorithm,
    CompressionStreamCorrupt,
)

__all__ = [
    # Pipeline
    'encode_file',
    'decode_file',
    'decode_container',
    'read_header',
    'read_info',
    'EncodeOptions',
    'DecodedContainer',
    'DATA_CHECKSUM_KEY',
    'UNCOMPRESSED_SIZE_KEY',

    # Data model
    'VoxelGrid',
    'ContainerHeader',
    'HeaderFlags',
    'BodyEncoding',
    'MetadataEntry',
    'MetadataType',
    'HEADER_SIZE',
    'MAGIC',
    'SUPPORTED_VERSION',

    # Codecs
    'crc32',
    'verify_crc32',
    'CompressionAlgorithm',
    'MAX_DECOMPRESSED_SIZE',
    'compress',
    'decompress',
    'encode_metadata',
    'decode_metadata',
    'encode_body',
    'decode_body',

    # Errors
    'ContainerError',
    'InvalidMagic',
    'TruncatedHeader',
    'UnsupportedVersion',
    'InvalidDimensions',
    'ChecksumMismatch',
    'TruncatedMetadata',
    'TrailingMetadataBytes',
    'InvalidMetadataType',
    'TruncatedBody',
    'TrailingBodyBytes',
    'CoordinateOutOfBounds',
    'InconsistentCompressionFlag',
    'UnknownCompressionAlgorithm',
    'CompressionStreamCorrupt',
]

__version__ = '1.0.0'
__license__ = 'MIT'
