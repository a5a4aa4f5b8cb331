"""RGBM encoding of linear HDR colors into 8-bit RGBA.

The encoded range covers linear values up to 256 (16 squared); the color
is stored in gamma 2.0 and the shared multiplier in alpha.
"""

from __future__ import annotations

import numpy as np

RGBM_RANGE = 16.0


def linear_to_rgbm(linear: np.ndarray) -> np.ndarray:
    """``(..., 3)`` linear float colors to ``(..., 4)`` floats in ``[0, 1]``."""
    rgb = np.sqrt(np.maximum(np.asarray(linear, dtype=np.float64), 0.0)) / RGBM_RANGE
    m = np.clip(rgb.max(axis=-1), 1e-6, 1.0)
    m = np.ceil(m * 255.0) / 255.0
    rgb = np.clip(rgb / m[..., np.newaxis], 0.0, 1.0)
    return np.concatenate([rgb, m[..., np.newaxis]], axis=-1)


def encode_rgbm(linear: np.ndarray) -> np.ndarray:
    """``(..., 3)`` linear floats to ``(..., 4)`` uint8 RGBM."""
    return np.rint(linear_to_rgbm(linear) * 255.0).astype(np.uint8)


def decode_rgbm(rgbm: np.ndarray) -> np.ndarray:
    """``(..., 4)`` uint8 (or unit float) RGBM back to linear float32 RGB."""
    rgbm = np.asarray(rgbm)
    if rgbm.dtype == np.uint8:
        rgbm = rgbm.astype(np.float64) / 255.0
    c = rgbm[..., :3] * rgbm[..., 3:4] * RGBM_RANGE
    return (c * c).astype(np.float32)
