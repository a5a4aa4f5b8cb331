"""Low-discrepancy sequences and BRDF sampling helpers.

Everything here is vectorized over sample arrays and depends only on the
sample index and count, so filters are reproducible without a seed.
"""

from __future__ import annotations

from math import pi

import numpy as np


def radical_inverse_vdc(bits: np.ndarray) -> np.ndarray:
    """Van der Corput radical inverse (32-bit reversal) of integer arrays."""
    bits = np.asarray(bits, dtype=np.uint64) & 0xFFFFFFFF
    bits = ((bits << 16) | (bits >> 16)) & 0xFFFFFFFF
    bits = ((bits & 0x55555555) << 1) | ((bits & 0xAAAAAAAA) >> 1)
    bits = ((bits & 0x33333333) << 2) | ((bits & 0xCCCCCCCC) >> 2)
    bits = ((bits & 0x0F0F0F0F) << 4) | ((bits & 0xF0F0F0F0) >> 4)
    bits = ((bits & 0x00FF00FF) << 8) | ((bits & 0xFF00FF00) >> 8)
    return bits.astype(np.float64) * 2.3283064365386963e-10  # / 0x100000000


def hammersley(i, n: int) -> np.ndarray:
    """Hammersley points ``(i / n, radical_inverse(i))``, shape ``(..., 2)``."""
    i = np.asarray(i)
    return np.stack([i.astype(np.float64) / n, radical_inverse_vdc(i)], axis=-1)


def hammersley_sequence(n: int) -> np.ndarray:
    """All ``n`` Hammersley 2D points, ``(n, 2)``."""
    return hammersley(np.arange(n), n)


def hemisphere_importance_sample_dggx(u: np.ndarray, a: float) -> np.ndarray:
    """GGX-distributed half vectors around +Z.

    ``a`` is the linear roughness (alpha). Returns ``(n, 3)``.
    """
    phi = 2.0 * pi * u[:, 0]
    # (a*a - 1) written as (a - 1)(a + 1) for precision
    cos_theta2 = (1.0 - u[:, 1]) / (1.0 + (a + 1.0) * ((a - 1.0) * u[:, 1]))
    cos_theta = np.sqrt(cos_theta2)
    sin_theta = np.sqrt(np.maximum(1.0 - cos_theta2, 0.0))
    return np.stack([sin_theta * np.cos(phi), sin_theta * np.sin(phi), cos_theta], axis=-1)


def hemisphere_cos_sample(u: np.ndarray) -> np.ndarray:
    """Cosine-distributed directions around +Z, ``(n, 3)``."""
    phi = 2.0 * pi * u[:, 0]
    cos_theta2 = 1.0 - u[:, 1]
    cos_theta = np.sqrt(cos_theta2)
    sin_theta = np.sqrt(1.0 - cos_theta2)
    return np.stack([sin_theta * np.cos(phi), sin_theta * np.sin(phi), cos_theta], axis=-1)


def distribution_ggx(noh, a: float):
    """GGX / Trowbridge-Reitz NDF for linear roughness ``a``."""
    f = (a - 1.0) * ((a + 1.0) * (noh * noh)) + 1.0
    return (a * a) / (pi * f * f)


def visibility(nov, nol, a: float):
    """Height-correlated Smith GGX visibility (includes 1 / (4 NoL NoV))."""
    a2 = a * a
    ggx_l = nov * np.sqrt((nol - nol * a2) * nol + a2)
    ggx_v = nol * np.sqrt((nov - nov * a2) * nov + a2)
    return 0.5 / (ggx_v + ggx_l)


def tangent_frame(n: np.ndarray):
    """Orthonormal ``(t, b)`` vectors completing each normal in ``(..., 3)``."""
    up = np.where(
        (np.abs(n[..., 2]) < 0.999)[..., np.newaxis],
        np.array([0.0, 0.0, 1.0]),
        np.array([1.0, 0.0, 0.0]),
    )
    t = np.cross(up, n)
    t /= np.linalg.norm(t, axis=-1, keepdims=True)
    b = np.cross(n, t)
    return t, b
