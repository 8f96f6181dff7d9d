#!/usr/bin/env python3
"""
SGU Voxel Metadata Tests
========================
"""

import struct

import pytest

from sgu_voxel.errors import InvalidMetadataType, TrailingMetadataBytes, TruncatedMetadata
from sgu_voxel.metadata import (
    MetadataType,
    decode_metadata,
    encode_metadata,
    iter_metadata,
    metadata_type_of,
)


def entry(key: bytes, tag: int, value: bytes, order: str = '<') -> bytes:
    return struct.pack(order + 'HBI', len(key), tag, len(value)) + key + value


class TestEncodeMetadata:
    """Test metadata serialization"""

    def test_string_entry_layout(self):
        data = encode_metadata({'author': 'X'})
        assert data == entry(b'author', MetadataType.STRING, b'X')
        assert len(data) == 14

    def test_big_endian_layout(self):
        data = encode_metadata({'n': 258}, byte_order='>')
        assert data == entry(b'n', MetadataType.INTEGER, struct.pack('>i', 258), '>')

    def test_empty_mapping(self):
        assert encode_metadata({}) == b''

    def test_type_mapping(self):
        assert metadata_type_of('a') == MetadataType.STRING
        assert metadata_type_of(1) == MetadataType.INTEGER
        assert metadata_type_of(1.5) == MetadataType.FLOAT
        assert metadata_type_of(b'\x00') == MetadataType.BINARY
        assert metadata_type_of(True) == MetadataType.BOOLEAN

    def test_integer_out_of_range(self):
        with pytest.raises(ValueError, match="32 bits"):
            encode_metadata({'big': 1 << 31})

    def test_unsupported_value_type(self):
        with pytest.raises(TypeError):
            encode_metadata({'list': [1, 2]})

    def test_non_string_key(self):
        with pytest.raises(TypeError):
            encode_metadata({1: 'x'})

    def test_key_too_long(self):
        with pytest.raises(ValueError):
            encode_metadata({'k' * 70000: 'x'})


class TestDecodeMetadata:
    """Test metadata parsing"""

    def test_roundtrip_all_types(self):
        metadata = {
            'name': 'höhle',
            'count': -5,
            'scale': 0.5,
            'blob': b'\x00\x01\xff',
            'solid': True,
            'hollow': False,
        }
        for order in ('<', '>'):
            assert decode_metadata(encode_metadata(metadata, order), order) == metadata

    def test_preserves_key_order(self):
        metadata = {'created': '2024-01-01', 'author': 'X', 'b': 1, 'a': 2}
        assert list(decode_metadata(encode_metadata(metadata))) == ['created', 'author', 'b', 'a']

    def test_float_is_single_precision(self):
        value = decode_metadata(encode_metadata({'f': 0.1}))['f']
        assert value == pytest.approx(0.1, rel=1e-6)
        assert value != 0.1

    def test_duplicate_keys_last_write_wins(self):
        data = (entry(b'k', MetadataType.INTEGER, struct.pack('<i', 1))
                + entry(b'other', MetadataType.STRING, b'x')
                + entry(b'k', MetadataType.INTEGER, struct.pack('<i', 2)))
        result = decode_metadata(data)
        assert result == {'k': 2, 'other': 'x'}
        assert list(result) == ['k', 'other']

    def test_boolean_nonzero_is_true(self):
        assert decode_metadata(entry(b'b', MetadataType.BOOLEAN, b'\x05')) == {'b': True}

    def test_iter_reports_types_and_offsets(self):
        data = encode_metadata({'a': 'x', 'b': 7})
        entries = list(iter_metadata(data, base_offset=64))
        assert [(e.key, e.type, e.value) for e in entries] == [
            ('a', MetadataType.STRING, 'x'),
            ('b', MetadataType.INTEGER, 7),
        ]
        assert entries[0].offset == 64
        assert entries[1].offset == 64 + 9

    def test_truncated_value(self):
        data = encode_metadata({'author': 'X', 'created': '2024-01-01'})
        with pytest.raises(TruncatedMetadata) as exc:
            decode_metadata(data[:-1], base_offset=64)
        assert exc.value.offset == 64 + 14

    def test_truncated_entry_header(self):
        data = encode_metadata({'author': 'X'}) + b'\x01\x00\x00'
        with pytest.raises(TruncatedMetadata) as exc:
            decode_metadata(data, base_offset=0)
        assert exc.value.offset == 14

    def test_count_shorter_than_section(self):
        data = encode_metadata({'a': 'x', 'b': 'y'})
        with pytest.raises(TrailingMetadataBytes) as exc:
            decode_metadata(data, count=1, base_offset=0)
        assert exc.value.offset == 9

    def test_count_longer_than_section(self):
        data = encode_metadata({'a': 'x'})
        with pytest.raises(TruncatedMetadata):
            decode_metadata(data, count=2)

    def test_exact_count(self):
        data = encode_metadata({'a': 'x', 'b': 'y'})
        assert decode_metadata(data, count=2) == {'a': 'x', 'b': 'y'}

    def test_unknown_type_tag(self):
        with pytest.raises(InvalidMetadataType) as exc:
            decode_metadata(entry(b'k', 9, b'v'), base_offset=64)
        assert exc.value.offset == 66

    def test_wrong_fixed_width(self):
        with pytest.raises(InvalidMetadataType):
            decode_metadata(entry(b'k', MetadataType.INTEGER, b'\x01\x02'))

    def test_invalid_utf8(self):
        with pytest.raises(InvalidMetadataType):
            decode_metadata(entry(b'k', MetadataType.STRING, b'\xff\xfe'))
        with pytest.raises(InvalidMetadataType):
            decode_metadata(entry(b'\xff', MetadataType.STRING, b'v'))

    def test_key_is_not_null_terminated(self):
        data = entry(b'key\x00', MetadataType.STRING, b'v')
        assert decode_metadata(data) == {'key\x00': 'v'}
