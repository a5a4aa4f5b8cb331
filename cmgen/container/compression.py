"""Block compression option strings and the encoders behind them."""

from __future__ import annotations

import shutil
import struct
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from lark import Lark, Transformer
from lark.exceptions import LarkError
from PIL import Image

from cmgen.errors import InputError

_GRAMMAR_PATH = Path(__file__).parent.parent / "grammar" / "compression.lark"

_parser = Lark(
    _GRAMMAR_PATH.read_text(encoding="utf-8"),
    parser="earley",
)

# Block sizes in GL enum order, starting at COMPRESSED_RGBA_ASTC_4x4
ASTC_BLOCK_SIZES = (
    (4, 4), (5, 4), (5, 5), (6, 5), (6, 6), (8, 5), (8, 6), (8, 8),
    (10, 5), (10, 6), (10, 8), (10, 10), (12, 10), (12, 12),
)
ASTC_RGBA_BASE = 0x93B0
ASTC_SRGB8_ALPHA8_BASE = 0x93D0

S3TC_RGBA_DXT5 = 0x83F3

ETC_FORMATS = {
    "r11": 0x9270,
    "signed_r11": 0x9271,
    "rg11": 0x9272,
    "signed_rg11": 0x9273,
    "rgb8": 0x9274,
    "srgb8": 0x9275,
    "rgb8_alpha": 0x9276,
    "srgb8_alpha": 0x9277,
    "rgba8": 0x9278,
    "srgb8_alpha8": 0x9279,
}

ASTC_MAGIC = 0x5CA1AB13
_ASTC_HEADER_SIZE = 16


class CompressionError(InputError):
    pass


@dataclass(frozen=True)
class CompressionConfig:
    family: str                 # "astc", "s3tc" or "etc"
    gl_internal_format: int
    srgb: bool = False
    # astc
    block: tuple[int, int] = (0, 0)
    thorough: bool = False
    hdr: bool = False
    # etc
    etc_format: str = ""
    metric: str = ""
    effort: int = 0


class _CompressionTransformer(Transformer):
    """Turns the parse tree into plain dicts; validation happens afterwards."""

    def start(self, items):
        return items[0]

    def astc(self, items):
        quality, mode, block = (str(t) for t in items)
        w, h = block.split("x")
        return {"family": "astc", "thorough": quality == "thorough",
                "hdr": mode == "hdr", "block": (int(w), int(h))}

    def s3tc(self, items):
        return {"family": "s3tc"}

    def etc(self, items):
        fmt, metric, effort = (str(t) for t in items)
        return {"family": "etc", "etc_format": fmt, "metric": metric,
                "effort": int(effort)}


def parse_compression(option: str, srgb: bool = False) -> CompressionConfig:
    """Parse a ``-c`` option string into a ``CompressionConfig``.

    Raises ``CompressionError`` for anything that is not a supported
    astc, s3tc or etc descriptor.
    """
    try:
        tree = _parser.parse(option)
    except LarkError:
        raise CompressionError(f"Unrecognized compression: {option}") from None
    fields = _CompressionTransformer().transform(tree)

    family = fields["family"]
    if family == "astc":
        block = fields["block"]
        if block not in ASTC_BLOCK_SIZES:
            raise CompressionError(
                f"Unrecognized compression: {option} "
                f"(ASTC block size {block[0]}x{block[1]} is not supported)"
            )
        base = ASTC_SRGB8_ALPHA8_BASE if srgb else ASTC_RGBA_BASE
        return CompressionConfig(
            family="astc",
            gl_internal_format=base + ASTC_BLOCK_SIZES.index(block),
            srgb=srgb,
            block=block,
            thorough=fields["thorough"],
            hdr=fields["hdr"],
        )
    if family == "s3tc":
        return CompressionConfig(family="s3tc", gl_internal_format=S3TC_RGBA_DXT5, srgb=srgb)

    effort = fields["effort"]
    if not 0 <= effort <= 100:
        raise CompressionError(
            f"Unrecognized compression: {option} (effort must be in [0, 100])"
        )
    return CompressionConfig(
        family="etc",
        gl_internal_format=ETC_FORMATS[fields["etc_format"]],
        srgb=srgb,
        etc_format=fields["etc_format"],
        metric=fields["metric"],
        effort=effort,
    )


def find_astcenc() -> Optional[str]:
    for name in ("astcenc", "astcenc-avx2", "astcenc-sse4.1", "astcenc-sse2"):
        path = shutil.which(name)
        if path:
            return path
    return None


def _read_astc_payload(data: bytes) -> tuple[int, int, bytes]:
    """Strip the 16-byte .astc file header, returning ``(width, height, blocks)``."""
    if len(data) < _ASTC_HEADER_SIZE:
        raise CompressionError("astcenc produced a truncated file")
    (magic,) = struct.unpack_from("<I", data, 0)
    if magic != ASTC_MAGIC:
        raise CompressionError(f"astcenc output has bad magic 0x{magic:08X}")
    width = int.from_bytes(data[7:10], "little")
    height = int.from_bytes(data[10:13], "little")
    return width, height, data[_ASTC_HEADER_SIZE:]


def _compress_astc(config: CompressionConfig, rgba: np.ndarray) -> bytes:
    exe = find_astcenc()
    if exe is None:
        raise CompressionError("astc compression requires the 'astcenc' tool on PATH")

    with tempfile.TemporaryDirectory(prefix="cmgen-astc-") as tmp:
        src = Path(tmp) / "in.png"
        dst = Path(tmp) / "out.astc"
        Image.fromarray(rgba).save(str(src))
        if config.hdr:
            mode = "-ch"
        else:
            mode = "-cs" if config.srgb else "-cl"
        result = subprocess.run(
            [exe, mode, str(src), str(dst),
             f"{config.block[0]}x{config.block[1]}",
             "-thorough" if config.thorough else "-fast"],
            capture_output=True, text=True,
        )
        if result.returncode != 0:
            raise CompressionError(f"astcenc failed:\n{result.stderr}{result.stdout}")
        _, _, payload = _read_astc_payload(dst.read_bytes())
    return payload


# etcpak entry points per ETC format; the signed and punch-through
# variants have no etcpak encoder
_ETCPAK_ENCODERS = {
    "rgb8": ("compress_etc2_rgb", 8),
    "srgb8": ("compress_etc2_rgb", 8),
    "rgba8": ("compress_etc2_rgba", 16),
    "srgb8_alpha8": ("compress_etc2_rgba", 16),
}


def _pad_to_blocks(rgba: np.ndarray) -> np.ndarray:
    """Edge-extend an image so both sides are multiples of 4."""
    h, w = rgba.shape[:2]
    pad_h, pad_w = -h % 4, -w % 4
    if pad_h or pad_w:
        rgba = np.pad(rgba, ((0, pad_h), (0, pad_w), (0, 0)), mode="edge")
    return np.ascontiguousarray(rgba)


def _compress_etcpak(function: str, block_bytes: int, rgba: np.ndarray) -> bytes:
    import etcpak

    padded = _pad_to_blocks(rgba)
    h, w = padded.shape[:2]
    payload = getattr(etcpak, function)(padded.tobytes(), w, h)
    expected = (w // 4) * (h // 4) * block_bytes
    if len(payload) != expected:
        raise CompressionError(
            f"etcpak {function} returned {len(payload)} bytes, expected {expected}"
        )
    return bytes(payload)


def compress_texture(config: CompressionConfig, rgba: np.ndarray) -> bytes:
    """Encode an ``(h, w, 4)`` uint8 image, returning raw compressed blocks.

    ASTC goes through the ``astcenc`` tool, S3TC and ETC2 through etcpak.
    Images whose sides are not multiples of 4 are edge-extended first.
    """
    rgba = np.ascontiguousarray(rgba, dtype=np.uint8)
    if config.family == "astc":
        return _compress_astc(config, rgba)
    if config.family == "s3tc":
        return _compress_etcpak("compress_bc3", 16, rgba)
    encoder = _ETCPAK_ENCODERS.get(config.etc_format)
    if encoder is None:
        raise CompressionError(f"no encoder is available for etc_{config.etc_format}")
    return _compress_etcpak(encoder[0], encoder[1], rgba)
