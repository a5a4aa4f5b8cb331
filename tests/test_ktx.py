"""Tests for the KTX 1.1 container."""

import struct

import pytest

from cmgen.container.ktx import (
    ENDIAN_DEFAULT,
    ENDIAN_SWAPPED,
    HEADER_SIZE,
    IDENTIFIER,
    KtxBlobIndex,
    KtxBundle,
    KtxError,
)


def _cube_bundle(num_mips=2, dim=2, blob_size=None):
    bundle = KtxBundle(num_mips, is_cubemap=True)
    bundle.info.pixel_width = dim
    bundle.info.pixel_height = dim
    for mip in range(num_mips):
        size = blob_size or (dim >> mip) ** 2 * 4
        for face in range(6):
            bundle.set_blob(KtxBlobIndex(mip, 0, face), bytes([mip * 6 + face]) * size)
    return bundle


class TestHeader:
    def test_identifier_and_marker(self):
        data = _cube_bundle().serialize()
        assert data[:12] == IDENTIFIER
        assert struct.unpack_from("<I", data, 12)[0] == ENDIAN_DEFAULT

    def test_header_fields(self):
        data = _cube_bundle(num_mips=2, dim=2).serialize()
        fields = struct.unpack_from("<13I", data, 12)
        # width, height, depth, array elements, faces, mips, kv bytes
        assert fields[6:13] == (2, 2, 0, 0, 6, 2, 0)
        # first level imageSize is one face
        assert struct.unpack_from("<I", data, HEADER_SIZE)[0] == 16

    def test_big_endian(self):
        bundle = _cube_bundle()
        bundle.info.endianness = ENDIAN_SWAPPED
        data = bundle.serialize()
        assert data[12:16] == bytes([0x04, 0x03, 0x02, 0x01])
        assert struct.unpack_from(">I", data, 16)[0] == bundle.info.gl_type
        parsed = KtxBundle.from_bytes(data)
        assert parsed.info.endianness == ENDIAN_SWAPPED
        assert parsed.get_blob((1, 0, 5)) == bundle.get_blob((1, 0, 5))

    def test_invalid_endianness_tag(self):
        bundle = _cube_bundle()
        bundle.info.endianness = 0x12345678
        with pytest.raises(KtxError):
            bundle.serialize()


class TestLayout:
    def test_exact_length(self):
        bundle = _cube_bundle(num_mips=2, dim=2)
        bundle.set_metadata("sh", "1 2 3\n")
        # 64 header + 16 kv + (4 + 6 * 16) + (4 + 6 * 4)
        assert bundle.get_serialized_length() == 208
        assert len(bundle.serialize()) == 208

    def test_key_value_padding(self):
        bundle = _cube_bundle(num_mips=1, dim=1)
        bundle.set_metadata("sh", "1 2 3\n")
        data = bundle.serialize()
        assert struct.unpack_from("<I", data, HEADER_SIZE - 4)[0] == 16
        assert struct.unpack_from("<I", data, HEADER_SIZE)[0] == 10
        assert data[HEADER_SIZE + 4:HEADER_SIZE + 16] == b"sh\x001 2 3\n\x00\x00\x00"

    def test_unaligned_faces_are_padded(self):
        bundle = _cube_bundle(num_mips=1, blob_size=3)
        data = bundle.serialize()
        assert len(data) == HEADER_SIZE + 4 + 6 * 4
        assert struct.unpack_from("<I", data, HEADER_SIZE)[0] == 3

    def test_missing_blob(self):
        bundle = KtxBundle(1, is_cubemap=True)
        bundle.set_blob(KtxBlobIndex(0, 0, 0), b"\0" * 4)
        with pytest.raises(AssertionError):
            bundle.serialize()

    def test_blob_index_out_of_range(self):
        bundle = KtxBundle(2)
        with pytest.raises(AssertionError):
            bundle.set_blob(KtxBlobIndex(0, 0, 1), b"")
        with pytest.raises(AssertionError):
            bundle.set_blob(KtxBlobIndex(2, 0, 0), b"")

    def test_array_image_size_covers_level(self):
        bundle = KtxBundle(1, array_length=2)
        bundle.set_blob(KtxBlobIndex(0, 0, 0), b"ab")
        bundle.set_blob(KtxBlobIndex(0, 1, 0), b"cd")
        data = bundle.serialize()
        fields = struct.unpack_from("<13I", data, 12)
        assert fields[9] == 2
        assert fields[10] == 1
        assert struct.unpack_from("<I", data, HEADER_SIZE)[0] == 4
        assert data[HEADER_SIZE + 4:] == b"abcd"


class TestParse:
    def test_round_trip(self):
        bundle = _cube_bundle(num_mips=3, dim=4)
        bundle.set_metadata("sh", "0.5 0.25 1\n")
        bundle.set_metadata("note", "x")
        parsed = KtxBundle.from_bytes(bundle.serialize())
        assert parsed.is_cubemap
        assert parsed.num_mips == 3
        assert parsed.metadata == {"sh": "0.5 0.25 1\n", "note": "x"}
        assert parsed.info.pixel_width == 4
        for index in bundle.blob_indices():
            assert parsed.get_blob(index) == bundle.get_blob(index)

    def test_round_trip_unaligned(self):
        bundle = _cube_bundle(num_mips=2, blob_size=5)
        parsed = KtxBundle.from_bytes(bundle.serialize())
        assert parsed.get_blob((1, 0, 3)) == bytes([9]) * 5

    def test_bad_identifier(self):
        with pytest.raises(KtxError):
            KtxBundle.from_bytes(b"\0" * 80)

    def test_truncated(self):
        data = _cube_bundle(num_mips=2, dim=4).serialize()
        with pytest.raises(KtxError):
            KtxBundle.from_bytes(data[:-40])
