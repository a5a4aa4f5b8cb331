"""Spherical harmonics projection and reconstruction on cubemaps.

Coefficients are stored as ``(bands * bands, 3)`` float64 arrays indexed
by ``sh_index(l, m) = l * l + l + m``. The real basis uses z as the polar
axis; ``sin(m * phi)`` terms go to negative ``m``, ``cos(m * phi)`` terms to
positive ``m``. All accumulation happens in float64.
"""

from __future__ import annotations

from math import factorial, pi, sqrt

import numpy as np

from cmgen.cubemap.cubemap import Cubemap, Face, solid_angle


def sh_index(l: int, m: int) -> int:
    return l * l + l + m


def kml(m: int, l: int) -> float:
    """Normalization factor of the (l, m) basis function."""
    m = abs(m)
    k = (2 * l + 1) * factorial(l - m) / factorial(l + m)
    return sqrt(k / (4.0 * pi))


def ki(bands: int) -> np.ndarray:
    """Normalization factors for every coefficient, sqrt(2) folded in for m != 0."""
    k = np.zeros(bands * bands, dtype=np.float64)
    for l in range(bands):
        k[sh_index(l, 0)] = kml(0, l)
        for m in range(1, l + 1):
            k[sh_index(l, m)] = k[sh_index(l, -m)] = sqrt(2.0) * kml(m, l)
    return k


def truncated_cos_sh(l: int) -> float:
    """Band ``l`` coefficient of the clamped cosine lobe (Lambertian transfer).

    Pre-multiplied by ``1 / K(0, l)``, so it scales a band directly.
    """
    if l == 0:
        return pi
    if l == 1:
        return 2.0 * pi / 3.0
    if l & 1:
        return 0.0
    l_2 = l // 2
    a0 = (1.0 if l_2 & 1 else -1.0) / ((l + 2) * (l - 1))
    a1 = factorial(l) / factorial(l_2) / (factorial(l_2) * (1 << l))
    return 2.0 * pi * a0 * a1


def sh_basis(directions: np.ndarray, bands: int) -> np.ndarray:
    """Un-normalized basis values for ``(..., 3)`` unit directions.

    Returns ``(..., bands * bands)``. Multiply by ``ki(bands)`` for the
    orthonormal basis.
    """
    d = np.asarray(directions, dtype=np.float64)
    x, y, z = d[..., 0], d[..., 1], d[..., 2]
    out = np.zeros(d.shape[:-1] + (bands * bands,), dtype=np.float64)

    # associated Legendre polynomials, m = 0
    p_2 = np.zeros_like(z)
    p_1 = np.ones_like(z)
    out[..., 0] = p_1
    for l in range(1, bands):
        p = ((2 * l - 1) * p_1 * z - (l - 1) * p_2) / l
        p_2, p_1 = p_1, p
        out[..., sh_index(l, 0)] = p

    # m > 0, stored on both +m and -m for now
    pmm = np.ones_like(z)
    for m in range(1, bands):
        pmm = (1 - 2 * m) * pmm
        p_2 = pmm
        out[..., sh_index(m, -m)] = p_2
        out[..., sh_index(m, m)] = p_2
        if m + 1 < bands:
            p_1 = (2 * m + 1) * pmm * z
            out[..., sh_index(m + 1, -m)] = p_1
            out[..., sh_index(m + 1, m)] = p_1
            for l in range(m + 2, bands):
                p = ((2 * l - 1) * p_1 * z - (l + m - 1) * p_2) / (l - m)
                p_2, p_1 = p_1, p
                out[..., sh_index(l, -m)] = p
                out[..., sh_index(l, m)] = p

    # azimuthal part: cos(m phi) and sin(m phi) scaled by sin(theta)^m
    cm, sm = x, y
    for m in range(1, bands):
        for l in range(m, bands):
            out[..., sh_index(l, -m)] *= sm
            out[..., sh_index(l, m)] *= cm
        cm, sm = cm * x - sm * y, sm * x + cm * y
    return out


def compute_sh(cm: Cubemap, bands: int, irradiance: bool = False) -> np.ndarray:
    """Project the cubemap's radiance onto ``bands`` SH bands.

    Each texel is weighted by its exact solid angle. With ``irradiance``
    the result is convolved with the cosine lobe and represents irradiance.
    """
    k = ki(bands)
    if irradiance:
        for l in range(bands):
            a = truncated_cos_sh(l)
            for m in range(-l, l + 1):
                k[sh_index(l, m)] *= a

    weights = solid_angle(cm.dim)
    sh = np.zeros((bands * bands, 3), dtype=np.float64)
    for face in Face:
        basis = sh_basis(cm.texel_directions(face), bands)
        color = cm.face(face).astype(np.float64) * weights[..., np.newaxis]
        sh += np.einsum("yxi,yxc->ic", basis, color)
    return sh * k[:, np.newaxis]


def render_sh(cm: Cubemap, sh: np.ndarray, bands: int) -> None:
    """Evaluate the truncated SH series at every texel of ``cm``."""
    k = ki(bands)
    scaled = sh[:bands * bands] * k[:, np.newaxis]
    for face in Face:
        basis = sh_basis(cm.texel_directions(face), bands)
        cm.face(face)[...] = basis @ scaled


# Fixed 3-band irradiance. Each constant is K(l,m)^2 * A(l) / pi times the
# square of the factor between the Legendre basis and the plain polynomial
# below, so shaders evaluate max(0, dot(coefficients, basis(n))).
_PRESCALED_SH3 = np.array([
    1.0 / (4.0 * pi),
    1.0 / (2.0 * pi),
    1.0 / (2.0 * pi),
    1.0 / (2.0 * pi),
    15.0 / (16.0 * pi),
    15.0 / (16.0 * pi),
    5.0 / (64.0 * pi),
    15.0 / (16.0 * pi),
    15.0 / (64.0 * pi),
])


def _sh3_polynomials(directions: np.ndarray) -> np.ndarray:
    x, y, z = directions[..., 0], directions[..., 1], directions[..., 2]
    return np.stack([
        np.ones_like(x),
        y,
        z,
        x,
        y * x,
        y * z,
        3.0 * z * z - 1.0,
        z * x,
        x * x - y * y,
    ], axis=-1)


def compute_irradiance_sh3_bands(cm: Cubemap) -> np.ndarray:
    """3-band irradiance SH with every constant (and 1/pi) pre-applied.

    Not interchangeable with ``compute_sh`` output: render it with
    ``render_prescaled_sh3_bands``.
    """
    weights = solid_angle(cm.dim)
    acc = np.zeros((9, 3), dtype=np.float64)
    for face in Face:
        basis = _sh3_polynomials(cm.texel_directions(face))
        color = cm.face(face).astype(np.float64) * weights[..., np.newaxis]
        acc += np.einsum("yxi,yxc->ic", basis, color)
    return acc * _PRESCALED_SH3[:, np.newaxis]


def render_prescaled_sh3_bands(cm: Cubemap, sh: np.ndarray) -> None:
    for face in Face:
        basis = _sh3_polynomials(cm.texel_directions(face))
        cm.face(face)[...] = np.maximum(basis @ sh, 0.0)


def format_sh(sh: np.ndarray, bands: int, irradiance: bool = False,
              prescaled: bool = False) -> str:
    """One ``(r, g, b); // Llm`` line per coefficient."""
    lines = []
    for l in range(bands):
        for m in range(-l, l + 1):
            r, g, b = sh[sh_index(l, m)]
            name = f"L{l}{m}"
            if irradiance:
                name += ", irradiance"
            if prescaled:
                name += ", pre-scaled base"
            lines.append(f"({r:18.15f}, {g:18.15f}, {b:18.15f}); // {name}")
    return "\n".join(lines) + "\n"


def format_sh_metadata(sh: np.ndarray, bands: int) -> str:
    """Whitespace separated ``r g b`` rows, as embedded in KTX metadata."""
    rows = []
    for i in range(bands * bands):
        rows.append(" ".join(f"{v:g}" for v in sh[i]))
    return "\n".join(rows) + "\n"
