"""KTX 1.1 texture container.

Holds ``mip levels x array layers x faces`` blobs plus key/value metadata
and serializes them to the exact byte layout of the Khronos KTX 1.1 file
format::

    identifier (12 bytes)
    13 x uint32 header fields
    key/value block:   uint32 size, "key\\0value\\0", pad to 4
    per mip level:     uint32 imageSize,
                       blobs (layer-major, face-minor), cube padding,
                       mip padding
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import NamedTuple

IDENTIFIER = bytes([0xAB, 0x4B, 0x54, 0x58, 0x20, 0x31, 0x31, 0xBB, 0x0D, 0x0A, 0x1A, 0x0A])

ENDIAN_DEFAULT = 0x04030201
ENDIAN_SWAPPED = 0x01020304

# GL enums used by the pipeline
UNSIGNED_BYTE = 0x1401
HALF_FLOAT = 0x140B
FLOAT = 0x1406
RGB = 0x1907
RGBA = 0x1908

_HEADER_FIELDS = 13
HEADER_SIZE = len(IDENTIFIER) + 4 * _HEADER_FIELDS


class KtxError(Exception):
    pass


class KtxBlobIndex(NamedTuple):
    mip_level: int
    array_layer: int
    cube_face: int


@dataclass
class KtxInfo:
    endianness: int = ENDIAN_DEFAULT
    gl_type: int = UNSIGNED_BYTE
    gl_type_size: int = 4
    gl_format: int = RGBA
    gl_internal_format: int = RGBA
    gl_base_internal_format: int = RGBA
    pixel_width: int = 0
    pixel_height: int = 0
    pixel_depth: int = 0


def _pad4(n: int) -> int:
    return -n % 4


class KtxBundle:
    """In-memory KTX container: header info, metadata and blobs."""

    def __init__(self, num_mips: int, array_length: int = 1, is_cubemap: bool = False):
        assert num_mips >= 1 and array_length >= 1
        self.num_mips = num_mips
        self.array_length = array_length
        self.num_faces = 6 if is_cubemap else 1
        self.info = KtxInfo()
        self._metadata: dict[str, str] = {}
        self._blobs: dict[KtxBlobIndex, bytes] = {}

    @property
    def is_cubemap(self) -> bool:
        return self.num_faces == 6

    # ------------------------------------------------------------------ #
    # Metadata and blobs
    # ------------------------------------------------------------------ #

    def set_metadata(self, key: str, value: str) -> None:
        self._metadata[key] = value

    def get_metadata(self, key: str) -> str | None:
        return self._metadata.get(key)

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self._metadata)

    def _check_index(self, index: KtxBlobIndex) -> None:
        assert 0 <= index.mip_level < self.num_mips, f"mip level out of range: {index}"
        assert 0 <= index.array_layer < self.array_length, f"array layer out of range: {index}"
        assert 0 <= index.cube_face < self.num_faces, f"cube face out of range: {index}"

    def set_blob(self, index: KtxBlobIndex, data: bytes) -> None:
        index = KtxBlobIndex(*index)
        self._check_index(index)
        self._blobs[index] = bytes(data)

    def get_blob(self, index: KtxBlobIndex) -> bytes | None:
        return self._blobs.get(KtxBlobIndex(*index))

    def blob_indices(self) -> list[KtxBlobIndex]:
        """Every index the header declares, in serialization order."""
        return [
            KtxBlobIndex(mip, layer, face)
            for mip in range(self.num_mips)
            for layer in range(self.array_length)
            for face in range(self.num_faces)
        ]

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    def _byte_order(self) -> str:
        if self.info.endianness == ENDIAN_DEFAULT:
            return "<"
        if self.info.endianness == ENDIAN_SWAPPED:
            return ">"
        raise KtxError(f"invalid endianness tag 0x{self.info.endianness:08X}")

    def _encoded_metadata(self) -> list[bytes]:
        return [
            key.encode("utf-8") + b"\0" + value.encode("utf-8") + b"\0"
            for key, value in self._metadata.items()
        ]

    def _key_value_size(self) -> int:
        return sum(4 + len(kv) + _pad4(len(kv)) for kv in self._encoded_metadata())

    def _non_array_cubemap(self) -> bool:
        return self.is_cubemap and self.array_length == 1

    def _image_size(self, mip: int) -> int:
        if self._non_array_cubemap():
            return len(self._blobs[KtxBlobIndex(mip, 0, 0)])
        return sum(
            len(self._blobs[KtxBlobIndex(mip, layer, face)])
            for layer in range(self.array_length)
            for face in range(self.num_faces)
        )

    def _level_payload_size(self, mip: int) -> int:
        if self._non_array_cubemap():
            size = sum(
                len(b) + _pad4(len(b))
                for b in (self._blobs[KtxBlobIndex(mip, 0, f)] for f in range(6))
            )
        else:
            size = self._image_size(mip)
        return size + _pad4(size)

    def _assert_complete(self) -> None:
        missing = [i for i in self.blob_indices() if i not in self._blobs]
        assert not missing, f"KTX bundle is missing blobs: {missing}"

    def get_serialized_length(self) -> int:
        """Exact number of bytes ``serialize()`` will produce."""
        self._assert_complete()
        size = HEADER_SIZE + self._key_value_size()
        for mip in range(self.num_mips):
            size += 4 + self._level_payload_size(mip)
        return size

    def serialize(self) -> bytes:
        self._assert_complete()
        bo = self._byte_order()
        info = self.info
        out = bytearray(IDENTIFIER)
        out += struct.pack(
            f"{bo}{_HEADER_FIELDS}I",
            ENDIAN_DEFAULT,
            info.gl_type,
            info.gl_type_size,
            info.gl_format,
            info.gl_internal_format,
            info.gl_base_internal_format,
            info.pixel_width,
            info.pixel_height,
            info.pixel_depth,
            self.array_length if self.array_length > 1 else 0,
            self.num_faces,
            self.num_mips,
            self._key_value_size(),
        )

        for kv in self._encoded_metadata():
            out += struct.pack(f"{bo}I", len(kv))
            out += kv
            out += b"\0" * _pad4(len(kv))

        cube_padding = self._non_array_cubemap()
        for mip in range(self.num_mips):
            out += struct.pack(f"{bo}I", self._image_size(mip))
            start = len(out)
            for layer in range(self.array_length):
                for face in range(self.num_faces):
                    blob = self._blobs[KtxBlobIndex(mip, layer, face)]
                    out += blob
                    if cube_padding:
                        out += b"\0" * _pad4(len(blob))
            out += b"\0" * _pad4(len(out) - start)

        assert len(out) == self.get_serialized_length()
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> "KtxBundle":
        """Parse a serialized KTX 1.1 file."""
        if data[:len(IDENTIFIER)] != IDENTIFIER:
            raise KtxError("not a KTX 1.1 file (bad identifier)")
        pos = len(IDENTIFIER)
        marker = struct.unpack_from("<I", data, pos)[0]
        if marker == ENDIAN_DEFAULT:
            bo, endianness = "<", ENDIAN_DEFAULT
        elif marker == ENDIAN_SWAPPED:
            bo, endianness = ">", ENDIAN_SWAPPED
        else:
            raise KtxError(f"bad endianness marker 0x{marker:08X}")

        fields = struct.unpack_from(f"{bo}{_HEADER_FIELDS}I", data, pos)
        pos += 4 * _HEADER_FIELDS
        (_, gl_type, gl_type_size, gl_format, gl_internal_format,
         gl_base_internal_format, width, height, depth,
         array_elements, faces, mips, kv_size) = fields

        bundle = cls(max(mips, 1), max(array_elements, 1), faces == 6)
        bundle.info = KtxInfo(
            endianness=endianness,
            gl_type=gl_type,
            gl_type_size=gl_type_size,
            gl_format=gl_format,
            gl_internal_format=gl_internal_format,
            gl_base_internal_format=gl_base_internal_format,
            pixel_width=width,
            pixel_height=height,
            pixel_depth=depth,
        )

        kv_end = pos + kv_size
        while pos < kv_end:
            (size,) = struct.unpack_from(f"{bo}I", data, pos)
            pos += 4
            raw = data[pos:pos + size]
            pos += size + _pad4(size)
            key, _, value = raw.partition(b"\0")
            bundle.set_metadata(key.decode("utf-8"), value.rstrip(b"\0").decode("utf-8"))

        for mip in range(bundle.num_mips):
            (image_size,) = struct.unpack_from(f"{bo}I", data, pos)
            pos += 4
            start = pos
            if bundle._non_array_cubemap():
                for face in range(6):
                    bundle.set_blob(KtxBlobIndex(mip, 0, face), data[pos:pos + image_size])
                    pos += image_size + _pad4(image_size)
            else:
                count = bundle.array_length * bundle.num_faces
                blob_size = image_size // count
                for layer in range(bundle.array_length):
                    for face in range(bundle.num_faces):
                        bundle.set_blob(KtxBlobIndex(mip, layer, face),
                                        data[pos:pos + blob_size])
                        pos += blob_size
            pos += _pad4(pos - start)
            if pos > len(data):
                raise KtxError("truncated KTX payload")
        return bundle
