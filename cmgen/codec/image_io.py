"""Reading and writing linear float images.

Images are ``(H, W, 3)`` float32 arrays holding linear radiance. Radiance
``.hdr`` files are handled natively, OpenEXR goes through imageio and
everything 8-bit goes through Pillow (with sRGB transfer applied).
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from cmgen.codec.rgbm import encode_rgbm
from cmgen.config import ImageFormat
from cmgen.errors import CmgenError, ImageDecodeError

_RGBE_EXPONENT_BIAS = 128 + 8


# ---------------------------------------------------------------------------
# sRGB transfer
# ---------------------------------------------------------------------------

def srgb_to_linear(c: np.ndarray) -> np.ndarray:
    c = np.asarray(c, dtype=np.float64)
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(c: np.ndarray) -> np.ndarray:
    c = np.clip(np.asarray(c, dtype=np.float64), 0.0, 1.0)
    return np.where(c <= 0.0031308, c * 12.92, 1.055 * c ** (1.0 / 2.4) - 0.055)


# ---------------------------------------------------------------------------
# Radiance RGBE
# ---------------------------------------------------------------------------

def _decode_rle_channel(data: bytes, pos: int, width: int):
    out = bytearray()
    while len(out) < width:
        count = data[pos]
        pos += 1
        if count > 128:
            # run of one value
            out.extend(data[pos:pos + 1] * (count - 128))
            pos += 1
        else:
            out.extend(data[pos:pos + count])
            pos += count
    if len(out) != width:
        raise ImageDecodeError("corrupt RLE scanline in Radiance file")
    return out, pos


def _rgbe_to_float(rgbe: np.ndarray) -> np.ndarray:
    e = rgbe[..., 3].astype(np.int32)
    rgb = np.ldexp(rgbe[..., :3].astype(np.float32), (e - _RGBE_EXPONENT_BIAS)[..., np.newaxis])
    return np.where((e > 0)[..., np.newaxis], rgb, 0.0).astype(np.float32)


def read_hdr(path: Path) -> np.ndarray:
    """Load a Radiance .hdr (RGBE) file as float32 RGB."""
    data = Path(path).read_bytes()
    pos = 0
    # header lines until an empty line
    while True:
        end = data.find(b"\n", pos)
        if end < 0:
            raise ImageDecodeError(f"{path}: truncated Radiance header")
        line = data[pos:end].strip()
        pos = end + 1
        if not line:
            break
        if line.startswith(b"FORMAT=") and line != b"FORMAT=32-bit_rle_rgbe":
            raise ImageDecodeError(f"{path}: unsupported Radiance format {line.decode()}")

    end = data.find(b"\n", pos)
    parts = data[pos:end].decode("ascii", errors="replace").split()
    pos = end + 1
    if len(parts) != 4 or parts[0] != "-Y" or parts[2] != "+X":
        raise ImageDecodeError(f"{path}: cannot parse resolution line {' '.join(parts)!r}")
    height, width = int(parts[1]), int(parts[3])

    rgbe = np.zeros((height, width, 4), dtype=np.uint8)
    try:
        for y in range(height):
            if data[pos] == 2 and data[pos + 1] == 2 and data[pos + 2] < 128:
                scanline_width = (data[pos + 2] << 8) | data[pos + 3]
                if scanline_width != width:
                    raise ImageDecodeError(
                        f"{path}: scanline width mismatch {scanline_width} vs {width}"
                    )
                pos += 4
                for ch in range(4):
                    channel, pos = _decode_rle_channel(data, pos, width)
                    rgbe[y, :, ch] = np.frombuffer(bytes(channel), dtype=np.uint8)
            else:
                flat = np.frombuffer(data, dtype=np.uint8, count=4 * width, offset=pos)
                rgbe[y] = flat.reshape(width, 4)
                pos += 4 * width
    except (IndexError, ValueError) as e:
        raise ImageDecodeError(f"{path}: unexpected end of Radiance data") from e
    return _rgbe_to_float(rgbe)


def _float_to_rgbe(image: np.ndarray) -> np.ndarray:
    rgb = np.maximum(np.asarray(image, dtype=np.float64), 0.0)
    v = rgb.max(axis=-1)
    mantissa, exponent = np.frexp(v)
    with np.errstate(divide="ignore", invalid="ignore"):
        scale = np.where(v > 1e-32, mantissa * 256.0 / v, 0.0)
    out = np.zeros(rgb.shape[:-1] + (4,), dtype=np.uint8)
    out[..., :3] = np.clip(rgb * scale[..., np.newaxis], 0, 255).astype(np.uint8)
    out[..., 3] = np.where(v > 1e-32, np.clip(exponent + 128, 0, 255), 0).astype(np.uint8)
    return out


def write_hdr(path: Path, image: np.ndarray) -> None:
    """Write float RGB as a Radiance .hdr file with RLE scanlines."""
    height, width = image.shape[:2]
    rgbe = _float_to_rgbe(image[..., :3])
    out = bytearray(b"#?RADIANCE\nFORMAT=32-bit_rle_rgbe\n\n")
    out += f"-Y {height} +X {width}\n".encode("ascii")
    if 8 <= width <= 0x7FFF:
        for y in range(height):
            out += bytes([2, 2, width >> 8, width & 0xFF])
            for ch in range(4):
                channel = rgbe[y, :, ch].tobytes()
                # literal runs only
                for start in range(0, width, 128):
                    chunk = channel[start:start + 128]
                    out.append(len(chunk))
                    out += chunk
    else:
        out += rgbe.tobytes()
    Path(path).write_bytes(bytes(out))


# ---------------------------------------------------------------------------
# Generic load / save
# ---------------------------------------------------------------------------

def _to_rgb(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        img = np.stack([img, img, img], axis=-1)
    elif img.shape[2] == 1:
        img = np.repeat(img, 3, axis=2)
    elif img.shape[2] > 3:
        img = img[:, :, :3]
    return img


def load_image(path: Path) -> np.ndarray:
    """Load any supported image as linear float32 RGB, ``(H, W, C)``.

    Only the first three channels are kept; grayscale is expanded, a
    two-channel image keeps its channel count so validation can reject it.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".hdr":
        return read_hdr(path)

    if suffix == ".exr":
        import imageio.v3 as iio
        try:
            img = np.asarray(iio.imread(str(path)), dtype=np.float32)
        except Exception as e:
            raise ImageDecodeError(f"{path}: cannot decode OpenEXR image ({e})") from e
        return _to_rgb(img).astype(np.float32)

    try:
        with Image.open(path) as im:
            if im.mode == "LA":
                raw = np.asarray(im, dtype=np.float64)
            else:
                raw = np.asarray(im.convert("RGB"), dtype=np.float64)
    except (UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"{path}: cannot decode image ({e})") from e
    return srgb_to_linear(raw / 255.0).astype(np.float32)


def save_image(path: Path, fmt: ImageFormat, image: np.ndarray, linear: bool = False) -> None:
    """Encode linear float RGB to ``path`` in the given format.

    PNG output is sRGB encoded unless ``linear`` is set (for data such as
    look-up tables).
    """
    path = Path(path)
    image = np.ascontiguousarray(image, dtype=np.float32)
    if fmt is ImageFormat.HDR:
        write_hdr(path, image)
    elif fmt is ImageFormat.EXR:
        import imageio.v3 as iio
        try:
            iio.imwrite(str(path), image, extension=".exr")
        except Exception as e:
            raise CmgenError(f"cannot write OpenEXR image {path} ({e})") from e
    elif fmt is ImageFormat.RGBM:
        Image.fromarray(encode_rgbm(image)).save(str(path), format="PNG")
    else:
        encoded = np.clip(image, 0.0, 1.0) if linear else linear_to_srgb(image)
        Image.fromarray(np.rint(encoded * 255.0).astype(np.uint8)).save(str(path), format="PNG")
