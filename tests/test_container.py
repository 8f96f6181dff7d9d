#!/usr/bin/env python3
"""
SGU Voxel Container Tests
=========================

End-to-end tests for the encode/decode pipeline: scenarios, round trips,
corruption detection and stage annotation.
"""

import itertools
import struct

import numpy as np
import pytest

from sgu_voxel import (
    DATA_CHECKSUM_KEY,
    HEADER_SIZE,
    UNCOMPRESSED_SIZE_KEY,
    BodyEncoding,
    ChecksumMismatch,
    CompressionAlgorithm,
    CompressionStreamCorrupt,
    ContainerError,
    ContainerHeader,
    EncodeOptions,
    HeaderFlags,
    InconsistentCompressionFlag,
    InvalidDimensions,
    InvalidMagic,
    InvalidMetadataType,
    TrailingBodyBytes,
    TrailingMetadataBytes,
    TruncatedBody,
    TruncatedMetadata,
    UnknownCompressionAlgorithm,
    VoxelGrid,
    compress,
    decode_container,
    decode_file,
    encode_file,
    encode_metadata,
    read_info,
)


def sequential_grid() -> VoxelGrid:
    return VoxelGrid.from_array(np.arange(1, 9, dtype=np.uint8).reshape(2, 2, 2))


def sample_grid(value_width: int = 2) -> VoxelGrid:
    rng = np.random.default_rng(7)
    dtype = {1: np.uint8, 2: np.uint16, 4: np.uint32}[value_width]
    array = np.zeros((5, 4, 3), dtype=dtype)
    array[2:, 1:3, :] = 9
    array[0, 0, 0] = np.iinfo(dtype).max
    array[4, 3, 2] = rng.integers(1, 200)
    return VoxelGrid.from_array(array)


SAMPLE_METADATA = {
    'author': 'X',
    'created': '2024-01-01',
    'level': 3,
    'scale': 0.25,
    'palette': b'\x00\xff\x10',
    'closed': True,
}

ALL_OPTIONS = [
    EncodeOptions(encoding=encoding, compression=algorithm, big_endian=big_endian)
    for encoding, algorithm, big_endian in itertools.product(
        BodyEncoding, CompressionAlgorithm, (False, True)
    )
]


def options_id(options: EncodeOptions) -> str:
    order = 'be' if options.big_endian else 'le'
    return f"{options.encoding.value}-{options.compression.name.lower()}-{order}"


def raw_file(header: ContainerHeader, metadata: bytes = b'', body: bytes = b'') -> bytes:
    return header.to_bytes() + metadata + body


class TestScenarios:
    """Reference scenarios"""

    def test_dense_minimal(self):
        """2x2x2 dense, 1-byte values 1..8, no metadata, no compression"""
        data = raw_file(ContainerHeader.build(2, 2, 2, 1), body=bytes(range(1, 9)))
        grid, metadata = decode_file(data)

        assert grid.get(1, 1, 1) == 8
        assert metadata == {}
        assert encode_file(sequential_grid()) == data

    def test_sparse_single_entry(self):
        """100^3 sparse grid with one voxel"""
        header = ContainerHeader.build(100, 100, 100, 1, encoding=BodyEncoding.SPARSE)
        body = struct.pack('<IIIIB', 1, 5, 5, 5, 255)
        grid, _ = decode_file(raw_file(header, body=body))

        assert grid.get(5, 5, 5) == 255
        assert grid.get(0, 0, 0) == 0

    def test_corrupt_magic(self):
        """Altered signature is rejected before anything else is read"""
        data = bytearray(encode_file(sequential_grid()))
        data[:4] = b'JUNK'
        with pytest.raises(InvalidMagic) as exc:
            decode_file(bytes(data))
        assert exc.value.stage == 'header'
        assert exc.value.offset == 0

        with pytest.raises(InvalidMagic):
            decode_file(b'JUNK')

    @pytest.mark.parametrize('big_endian', [False, True])
    def test_magic_swapped_to_other_signature(self, big_endian):
        """Mirrored signature is still an invalid signature"""
        data = bytearray(encode_file(sequential_grid(), options=EncodeOptions(big_endian=big_endian)))
        data[:4] = b'SGU ' if big_endian else b' UGS'
        with pytest.raises(InvalidMagic) as exc:
            decode_file(bytes(data))
        assert exc.value.stage == 'header'
        assert exc.value.offset == 0

    def test_metadata_roundtrip(self):
        metadata = {'author': 'X', 'created': '2024-01-01'}
        _, restored = decode_file(encode_file(sequential_grid(), metadata))

        assert restored == metadata
        assert list(restored) == ['author', 'created']


class TestRoundTrip:
    """Encode/decode for every body encoding, compression and byte order"""

    @pytest.mark.parametrize('options', ALL_OPTIONS, ids=options_id)
    def test_roundtrip(self, options):
        grid = sample_grid()
        restored, metadata = decode_file(encode_file(grid, SAMPLE_METADATA, options))
        assert restored == grid
        assert metadata == SAMPLE_METADATA

    @pytest.mark.parametrize('options', ALL_OPTIONS, ids=options_id)
    def test_reencode_is_byte_identical(self, options):
        data = encode_file(sample_grid(4), SAMPLE_METADATA, options)
        grid, metadata = decode_file(data)
        assert encode_file(grid, metadata, options) == data

    @pytest.mark.parametrize('value_width', [1, 2, 4])
    def test_value_widths(self, value_width):
        grid = sample_grid(value_width)
        options = EncodeOptions(encoding=BodyEncoding.SPARSE, compression=CompressionAlgorithm.RLE)
        restored, _ = decode_file(encode_file(grid, None, options))
        assert restored == grid
        assert restored.value_width == value_width

    def test_sparse_grid_dense_encoding(self):
        grid = VoxelGrid.from_entries(4, 4, 4, 1, {(3, 2, 1): 6})
        restored, _ = decode_file(encode_file(grid))
        assert not restored.is_sparse
        assert restored == grid

    def test_big_endian_signature(self):
        data = encode_file(sequential_grid(), options=EncodeOptions(big_endian=True))
        assert data[:4] == b' UGS'
        assert decode_container(data).header.big_endian

    def test_empty_metadata_leaves_flag_clear(self):
        header = decode_container(encode_file(sequential_grid(), {})).header
        assert not header.has_metadata
        assert header.metadata_size == 0
        assert header.data_offset == HEADER_SIZE

    def test_metadata_sets_offsets(self):
        data = encode_file(sequential_grid(), {'author': 'X'})
        header = decode_container(data).header
        assert header.has_metadata
        assert header.metadata_size == 14
        assert header.data_offset == HEADER_SIZE + 14
        assert len(data) == HEADER_SIZE + 14 + 8

    def test_rle_shrinks_uniform_grid(self):
        grid = VoxelGrid.from_array(np.full((32, 32, 32), 4, dtype=np.uint8))
        data = encode_file(grid, options=EncodeOptions(compression=CompressionAlgorithm.RLE))
        assert len(data) == HEADER_SIZE + 1 + 5

    def test_encode_requires_grid(self):
        with pytest.raises(TypeError):
            encode_file(np.zeros((2, 2, 2), dtype=np.uint8))

    @pytest.mark.parametrize('metadata', [
        {DATA_CHECKSUM_KEY: 'abc'},
        {DATA_CHECKSUM_KEY: True},
        {UNCOMPRESSED_SIZE_KEY: 1.5},
    ])
    def test_reserved_entry_must_be_integer(self, metadata):
        with pytest.raises(TypeError):
            encode_file(sequential_grid(), metadata)

    def test_reserved_entry_must_describe_body(self):
        with pytest.raises(ValueError, match=DATA_CHECKSUM_KEY):
            encode_file(sequential_grid(), {DATA_CHECKSUM_KEY: 12345})
        with pytest.raises(ValueError, match=UNCOMPRESSED_SIZE_KEY):
            encode_file(sequential_grid(), {UNCOMPRESSED_SIZE_KEY: 7})

    def test_reserved_entries_from_decoded_file(self):
        """Decoded reserved entries encode again, with or without data_checksum"""
        options = EncodeOptions(encoding=BodyEncoding.SPARSE, compression=CompressionAlgorithm.RLE,
                                data_checksum=True)
        data = encode_file(sample_grid(), {'author': 'X'}, options)
        grid, metadata = decode_file(data)

        plain = EncodeOptions(encoding=BodyEncoding.SPARSE, compression=CompressionAlgorithm.RLE)
        assert encode_file(grid, metadata, plain) == data
        assert decode_file(encode_file(grid, metadata, options)) == (grid, metadata)


class TestCorruption:
    """Rejection of damaged or inconsistent files"""

    def test_header_bit_flips_break_checksum(self):
        data = encode_file(VoxelGrid.zeros(3, 5, 7), {'k': 'v'})
        for byte in list(range(6, 20)) + list(range(24, 32)):
            corrupt = bytearray(data)
            corrupt[byte] ^= 0x10
            with pytest.raises(ChecksumMismatch) as exc:
                decode_file(bytes(corrupt))
            assert exc.value.stage == 'header'

    def test_zero_width_rejected(self):
        header = ContainerHeader.build(2, 2, 2, 1).to_bytes()
        data = header[:8] + struct.pack('<I', 0) + header[12:] + bytes(8)
        with pytest.raises(InvalidDimensions):
            decode_file(data)

    def test_sparse_repeated_coordinate(self):
        header = ContainerHeader.build(4, 4, 4, 2, encoding=BodyEncoding.SPARSE)
        body = struct.pack('<IIIIHIIIH', 2, 1, 2, 3, 100, 1, 2, 3, 200)
        grid, _ = decode_file(raw_file(header, body=body))
        assert grid.get(1, 2, 3) == 200

    def test_dense_body_truncated(self):
        data = encode_file(sequential_grid())[:-1]
        with pytest.raises(TruncatedBody) as exc:
            decode_file(data)
        assert exc.value.stage == 'body'
        assert exc.value.offset == HEADER_SIZE + 7

    def test_dense_body_trailing(self):
        with pytest.raises(TrailingBodyBytes):
            decode_file(encode_file(sequential_grid()) + b'\x00')

    def test_data_checksum_entry(self):
        data = encode_file(sequential_grid(), {'author': 'X'}, EncodeOptions(data_checksum=True))
        _, metadata = decode_file(data)
        assert list(metadata) == ['author', DATA_CHECKSUM_KEY]

        corrupt = bytearray(data)
        corrupt[-1] ^= 0xFF
        with pytest.raises(ChecksumMismatch) as exc:
            decode_file(bytes(corrupt))
        assert exc.value.stage == 'body'

    def test_data_checksum_checked_after_decompression(self):
        options = EncodeOptions(compression=CompressionAlgorithm.ZLIB, data_checksum=True)
        data = encode_file(sample_grid(), None, options)
        header = decode_container(data).header
        metadata = encode_metadata({DATA_CHECKSUM_KEY: 12345})
        patched = ContainerHeader.build(
            header.width, header.height, header.depth, header.value_width,
            compressed=True, metadata_size=len(metadata),
        )
        body = data[header.data_offset:]
        with pytest.raises(ChecksumMismatch):
            decode_file(raw_file(patched, metadata, body))

    def test_uncompressed_size_for_compressed_sparse(self):
        options = EncodeOptions(encoding=BodyEncoding.SPARSE, compression=CompressionAlgorithm.LZ4,
                                data_checksum=True)
        grid = sample_grid()
        restored, metadata = decode_file(encode_file(grid, None, options))
        assert restored == grid
        assert metadata[UNCOMPRESSED_SIZE_KEY] == 4 + grid.count_nonzero() * 14

    def test_negative_uncompressed_size(self):
        metadata = encode_metadata({UNCOMPRESSED_SIZE_KEY: -1})
        header = ContainerHeader.build(2, 2, 2, 1, encoding=BodyEncoding.SPARSE, compressed=True,
                                       metadata_size=len(metadata), has_metadata=True)
        with pytest.raises(InvalidMetadataType) as exc:
            decode_file(raw_file(header, metadata, b'\x03' + bytes(4)))
        assert exc.value.stage == 'metadata'

    def test_compressed_flag_with_tag_none(self):
        header = ContainerHeader.build(2, 2, 2, 1, compressed=True)
        with pytest.raises(InconsistentCompressionFlag) as exc:
            decode_file(raw_file(header, body=b'\x00' + bytes(8)))
        assert exc.value.stage == 'compression'
        assert exc.value.offset == HEADER_SIZE

    def test_unknown_compression_tag(self):
        header = ContainerHeader.build(2, 2, 2, 1, compressed=True)
        with pytest.raises(UnknownCompressionAlgorithm):
            decode_file(raw_file(header, body=b'\x09' + bytes(8)))

    def test_rle_overruns_dense_grid(self):
        header = ContainerHeader.build(2, 2, 2, 1, compressed=True)
        with pytest.raises(CompressionStreamCorrupt):
            decode_file(raw_file(header, body=b'\x01' + struct.pack('<BI', 1, 9)))

    def test_rle_bounded_for_huge_declared_grid(self):
        header = ContainerHeader.build(65536, 65536, 65536, 1, compressed=True)
        runs = struct.pack('<BI', 7, 0xFFFFFFFF) * 200
        with pytest.raises(CompressionStreamCorrupt) as exc:
            decode_file(raw_file(header, body=b'\x01' + runs))
        assert exc.value.stage == 'compression'

    @pytest.mark.parametrize('algorithm', [CompressionAlgorithm.LZ4, CompressionAlgorithm.ZLIB])
    def test_general_codec_bounded_for_huge_declared_grid(self, algorithm):
        header = ContainerHeader.build(2 ** 21, 2 ** 21, 2 ** 21, 1, compressed=True)
        payload = compress(bytes(8), algorithm)
        with pytest.raises(TruncatedBody) as exc:
            decode_file(raw_file(header, body=payload))
        assert exc.value.stage == 'body'

    def test_rle_underruns_dense_grid(self):
        header = ContainerHeader.build(2, 2, 2, 1, compressed=True)
        with pytest.raises(TruncatedBody) as exc:
            decode_file(raw_file(header, body=b'\x01' + struct.pack('<BI', 1, 7)))
        assert exc.value.stage == 'body'
        assert exc.value.offset is None

    def test_metadata_size_without_flag(self):
        header = ContainerHeader(2, 2, 2, 1, metadata_size=4, data_offset=68)
        with pytest.raises(TrailingMetadataBytes) as exc:
            decode_file(raw_file(header, bytes(4), bytes(8)))
        assert exc.value.stage == 'metadata'

    def test_metadata_past_end_of_file(self):
        header = ContainerHeader(2, 2, 2, 1, flags=HeaderFlags.HAS_METADATA,
                                 metadata_size=100, data_offset=164)
        with pytest.raises(TruncatedMetadata):
            decode_file(raw_file(header, bytes(20)))

    def test_body_offset_inside_metadata(self):
        metadata = encode_metadata({'author': 'X'})
        header = ContainerHeader(2, 2, 2, 1, flags=HeaderFlags.HAS_METADATA,
                                 metadata_size=len(metadata), data_offset=HEADER_SIZE + 4)
        with pytest.raises(TruncatedMetadata) as exc:
            decode_file(raw_file(header, metadata, bytes(8)))
        assert exc.value.offset == 24

    def test_body_offset_past_end_of_file(self):
        header = ContainerHeader(2, 2, 2, 1, data_offset=1000)
        with pytest.raises(TruncatedBody):
            decode_file(raw_file(header, body=bytes(8)))

    def test_truncated_metadata_section(self):
        metadata = encode_metadata({'author': 'X'})
        header = ContainerHeader(2, 2, 2, 1, flags=HeaderFlags.HAS_METADATA,
                                 metadata_size=len(metadata) - 1,
                                 data_offset=HEADER_SIZE + len(metadata) - 1)
        with pytest.raises(TruncatedMetadata) as exc:
            decode_file(raw_file(header, metadata[:-1], bytes(8)))
        assert exc.value.stage == 'metadata'
        assert exc.value.offset == HEADER_SIZE

    def test_padding_before_body_is_ignored(self):
        metadata = encode_metadata({'author': 'X'})
        header = ContainerHeader(2, 2, 2, 1, flags=HeaderFlags.HAS_METADATA,
                                 metadata_size=len(metadata),
                                 data_offset=HEADER_SIZE + len(metadata) + 6)
        grid, restored = decode_file(raw_file(header, metadata + bytes(6), bytes(range(1, 9))))
        assert grid.get(1, 1, 1) == 8
        assert restored == {'author': 'X'}


class TestErrors:
    """Error contract"""

    def test_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            decode_file(b'nope')

    def test_message_includes_stage_and_offset(self):
        with pytest.raises(ContainerError) as exc:
            decode_file(encode_file(sequential_grid())[:-2])
        text = str(exc.value)
        assert '[body]' in text
        assert 'byte 70' in text
        assert exc.value.code == 'TruncatedBody'


class TestReadInfo:
    """Header/metadata inspection"""

    def test_info_fields(self):
        options = EncodeOptions(encoding=BodyEncoding.SPARSE, compression=CompressionAlgorithm.ZLIB)
        data = encode_file(sample_grid(), {'author': 'X', 'level': 2}, options)
        info = read_info(data)

        assert info['dimensions'] == '3x4x5'
        assert info['value_width'] == 2
        assert info['body_encoding'] == 'sparse'
        assert info['compressed'] is True
        assert info['compression'] == 'zlib'
        assert info['byte_order'] == 'little-endian'
        assert info['file_size'] == len(data)
        assert info['metadata'] == {'author': ('string', 'X'), 'level': ('integer', 2)}

    def test_info_does_not_decode_body(self):
        data = encode_file(sequential_grid())[:-3]
        assert read_info(data)['body_size'] == 5
