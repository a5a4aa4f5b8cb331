"""Conversions between cubemaps and flat image layouts."""

from __future__ import annotations

from math import pi

import numpy as np

from cmgen.cubemap.cubemap import Cubemap, Face, is_power_of_two
from cmgen.errors import InputError

# Radiance values are clamped to this before any processing
MAX_RADIANCE = 256.0

UV_GRID_INTENSITY = 5.0

_UV_GRID_COLORS = {
    Face.PX: (1.0, 1.0, 1.0),  # white
    Face.NX: (1.0, 0.0, 0.0),  # red
    Face.PY: (0.0, 0.0, 1.0),  # blue
    Face.NY: (0.0, 1.0, 0.0),  # green
    Face.PZ: (1.0, 1.0, 0.0),  # yellow
    Face.NZ: (1.0, 0.0, 1.0),  # magenta
}

# (column, row) of each face in a horizontal (4x3) and vertical (3x4) cross
_HORIZONTAL_CROSS = {
    Face.NX: (0, 1), Face.PX: (2, 1), Face.PY: (1, 0),
    Face.NY: (1, 2), Face.PZ: (1, 1), Face.NZ: (3, 1),
}
_VERTICAL_CROSS = {
    Face.NX: (0, 1), Face.PX: (2, 1), Face.PY: (1, 0),
    Face.NY: (1, 2), Face.PZ: (1, 1), Face.NZ: (1, 3),
}


class AspectRatioError(InputError):
    def __init__(self, width: int, height: int):
        super().__init__(
            f"Aspect ratio not supported: {width}x{height}\n"
            "Supported aspect ratios:\n"
            "  2:1, lat/long or equirectangular\n"
            "  3:4, vertical cross (height must be power of two)\n"
            "  4:3, horizontal cross (width must be power of two)"
        )
        self.width = width
        self.height = height


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_input_raster(raster: np.ndarray) -> str:
    """Classify an input raster as ``"cross"`` or ``"equirect"``.

    Raises InputError for a wrong channel count and AspectRatioError for
    any shape that is neither layout.
    """
    if raster.ndim != 3 or raster.shape[2] != 3:
        channels = 1 if raster.ndim == 2 else raster.shape[-1]
        raise InputError(
            f"Input image must be RGB (3 channels)! This image has {channels} channels."
        )
    height, width = raster.shape[:2]
    if _cross_orientation(width, height) is not None:
        return "cross"
    if width == 2 * height:
        return "equirect"
    raise AspectRatioError(width, height)


def _cross_orientation(width: int, height: int) -> str | None:
    if is_power_of_two(width) and width * 3 == height * 4:
        return "horizontal"
    if is_power_of_two(height) and height * 3 == width * 4:
        return "vertical"
    return None


def clamp_radiance(raster: np.ndarray) -> np.ndarray:
    """Replace NaN/inf by zero and clamp to ``[0, MAX_RADIANCE]`` in place."""
    np.nan_to_num(raster, copy=False, nan=0.0, posinf=0.0, neginf=0.0)
    np.clip(raster, 0.0, MAX_RADIANCE, out=raster)
    return raster


# ---------------------------------------------------------------------------
# Into a cubemap
# ---------------------------------------------------------------------------

def _resample_square(cell: np.ndarray, dim: int) -> np.ndarray:
    n = cell.shape[0]
    if n == dim:
        return cell
    if n > dim:
        k = n // dim
        return cell.reshape(dim, k, dim, k, 3).mean(axis=(1, 3))
    k = dim // n
    return np.repeat(np.repeat(cell, k, axis=0), k, axis=1)


def cross_to_cubemap(dst: Cubemap, src: np.ndarray) -> None:
    """Copy a horizontal or vertical cross into ``dst``, resampling faces."""
    height, width = src.shape[:2]
    orientation = _cross_orientation(width, height)
    if orientation is None:
        raise AspectRatioError(width, height)

    if orientation == "horizontal":
        n, cells = width // 4, _HORIZONTAL_CROSS
    else:
        n, cells = height // 4, _VERTICAL_CROSS

    for face, (col, row) in cells.items():
        cell = src[row * n:(row + 1) * n, col * n:(col + 1) * n]
        if orientation == "vertical" and face == Face.NZ:
            # the vertical cross stores -Z upside down below -Y
            cell = cell[::-1, ::-1]
        dst.face(face)[...] = _resample_square(cell, dst.dim)


def sample_equirect(panorama: np.ndarray, directions: np.ndarray) -> np.ndarray:
    """Bilinearly sample a lat/long panorama for ``(..., 3)`` directions.

    Wraps horizontally, clamps vertically.
    """
    h, w, _ = panorama.shape
    x = directions[..., 0]
    y = directions[..., 1]
    z = directions[..., 2]

    u = 0.5 + np.arctan2(x, z) / (2.0 * pi)
    v = 0.5 - np.arcsin(np.clip(y, -1.0, 1.0)) / pi

    px = u * w - 0.5
    py = v * h - 0.5

    x0 = np.floor(px).astype(np.int64)
    y0 = np.floor(py).astype(np.int64)
    fx = (px - x0)[..., np.newaxis]
    fy = (py - y0)[..., np.newaxis]

    x1 = (x0 + 1) % w
    x0 = x0 % w
    y1 = np.clip(y0 + 1, 0, h - 1)
    y0 = np.clip(y0, 0, h - 1)

    c00 = panorama[y0, x0]
    c10 = panorama[y0, x1]
    c01 = panorama[y1, x0]
    c11 = panorama[y1, x1]

    return (c00 * (1 - fx) * (1 - fy) +
            c10 * fx * (1 - fy) +
            c01 * (1 - fx) * fy +
            c11 * fx * fy)


def equirectangular_to_cubemap(dst: Cubemap, src: np.ndarray) -> None:
    """Resample a 2:1 lat/long panorama into ``dst``.

    When a cube texel covers several panorama pixels, it is supersampled
    on a regular n x n grid (n <= 4).
    """
    height, width = src.shape[:2]
    if width != 2 * height:
        raise AspectRatioError(width, height)

    dim = dst.dim
    # a face spans a quarter of the panorama's width, i.e. height / 2 pixels
    n = int(np.clip(np.ceil(height / (2.0 * dim)), 1, 4))
    offsets = (np.arange(n, dtype=np.float64) + 0.5) / n
    base = np.arange(dim, dtype=np.float64)
    xx, yy = np.meshgrid(base, base)

    for face in Face:
        acc = np.zeros((dim, dim, 3), dtype=np.float64)
        for oy in offsets:
            for ox in offsets:
                dirs = dst.direction_for(face, xx + ox, yy + oy)
                acc += sample_equirect(src, dirs)
        dst.face(face)[...] = acc / (n * n)


def mirror_cubemap(dst: Cubemap, src: Cubemap) -> None:
    """Mirror the environment across the X axis.

    Sampling ``src`` at ``(-x, y, z)`` swaps the +X and -X faces and flips
    every face horizontally.
    """
    swap = {Face.PX: Face.NX, Face.NX: Face.PX}
    for face in Face:
        dst.face(face)[...] = src.face(swap.get(face, face))[:, ::-1]


def generate_uv_grid(cm: Cubemap, frequency_x: int, frequency_y: int) -> None:
    """Fill ``cm`` with a per-face colored checkerboard."""
    if frequency_x < 1 or frequency_y < 1:
        raise InputError("UV grid frequency must be at least 1")
    dim = cm.dim
    cell_x = max(dim // frequency_x, 1)
    cell_y = max(dim // frequency_y, 1)
    idx = np.arange(dim)
    checker = ((idx[:, None] // cell_y) ^ (idx[None, :] // cell_x)) & 1
    for face in Face:
        color = np.array(_UV_GRID_COLORS[face], dtype=np.float32) * UV_GRID_INTENSITY
        cm.face(face)[...] = checker[..., None].astype(np.float32) * color


# ---------------------------------------------------------------------------
# Out of a cubemap
# ---------------------------------------------------------------------------

def cubemap_to_equirectangular(cm: Cubemap, height: int | None = None) -> np.ndarray:
    """Render ``cm`` as a ``(height, 2 * height, 3)`` lat/long raster."""
    height = height or cm.dim
    width = 2 * height
    u = (np.arange(width, dtype=np.float64) + 0.5) / width
    v = (np.arange(height, dtype=np.float64) + 0.5) / height
    uu, vv = np.meshgrid(u, v)
    theta = (uu - 0.5) * (2.0 * pi)
    phi = (0.5 - vv) * pi
    dirs = np.stack([
        np.cos(phi) * np.sin(theta),
        np.sin(phi),
        np.cos(phi) * np.cos(theta),
    ], axis=-1)
    return cm.filter_at(dirs).astype(np.float32)


def octahedron_directions(dim: int) -> np.ndarray:
    """Directions through each pixel of a ``dim x dim`` octahedral map.

    +Y sits at the center of the image, -Y at its four corners.
    """
    c = (np.arange(dim, dtype=np.float64) + 0.5) * (2.0 / dim) - 1.0
    u, v = np.meshgrid(c, -c)
    w = 1.0 - np.abs(u) - np.abs(v)
    lower = w < 0
    su = np.where(u >= 0, 1.0, -1.0)
    sv = np.where(v >= 0, 1.0, -1.0)
    fu = np.where(lower, (1.0 - np.abs(v)) * su, u)
    fv = np.where(lower, (1.0 - np.abs(u)) * sv, v)
    d = np.stack([fu, w, -fv], axis=-1)
    return d / np.linalg.norm(d, axis=-1, keepdims=True)


def cubemap_to_octahedron(cm: Cubemap, dim: int | None = None) -> np.ndarray:
    """Render ``cm`` as a ``(dim, dim, 3)`` octahedral raster."""
    dim = dim or cm.dim
    return cm.filter_at(octahedron_directions(dim)).astype(np.float32)
