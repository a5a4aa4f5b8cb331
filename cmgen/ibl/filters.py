"""Importance-sampled IBL filters: specular prefilter, diffuse irradiance, DFG.

Each destination texel only reads the (read-only) source mip chain, so
the filters evaluate whole batches of texels at once with numpy.
"""

from __future__ import annotations

from math import log, pi

import numpy as np

from cmgen.cubemap.cubemap import Cubemap, Face
from cmgen.ibl.sampling import (
    distribution_ggx,
    hammersley_sequence,
    hemisphere_cos_sample,
    hemisphere_importance_sample_dggx,
    tangent_frame,
    visibility,
)

# LOD bias letting neighbouring samples' footprints overlap a little
LOD_BIAS_K = 4.0

# upper bound on texels * samples evaluated in one batch
_BATCH_ELEMENTS = 1 << 18


def _log4(x):
    return np.log(x) / log(4.0)


def _source_lod(omega_s, base_dim: int, max_level: int):
    """Mip level whose texel solid angle matches the sample's, clamped."""
    omega_p = (4.0 * pi) / (6.0 * base_dim * base_dim)
    lod = _log4(omega_s) - _log4(omega_p) + _log4(LOD_BIAS_K)
    return np.clip(lod, 0.0, float(max_level))


def _integrate(dst: Cubemap, levels: list[Cubemap], samples: np.ndarray,
               weights: np.ndarray, lods: np.ndarray) -> None:
    """Write ``sum_i weights[i] * env(R(N) @ samples[i])`` into every texel.

    ``samples`` are tangent-space directions around +Z; ``lods`` selects a
    fractional source level per sample (trilinear lookup).
    """
    max_level = len(levels) - 1
    l0 = np.floor(lods).astype(np.int64)
    l1 = np.minimum(l0 + 1, max_level)
    frac = (lods - l0)[:, np.newaxis]

    batch = max(1, _BATCH_ELEMENTS // len(samples))
    for face in Face:
        normals = dst.texel_directions(face).reshape(-1, 3)
        t, b = tangent_frame(normals)
        out = np.zeros_like(normals)
        for start in range(0, len(normals), batch):
            n = normals[start:start + batch]
            tb, bb = t[start:start + batch], b[start:start + batch]
            acc = np.zeros_like(n)
            for level in np.unique(l0):
                sel = l0 == level
                s = samples[sel]
                # (texels, samples, 3) world-space directions
                dirs = (s[:, 0][None, :, None] * tb[:, None, :]
                        + s[:, 1][None, :, None] * bb[:, None, :]
                        + s[:, 2][None, :, None] * n[:, None, :])
                c0 = levels[level].filter_at(dirs)
                c = c0
                next_level = l1[sel][0]
                if next_level != level:
                    c1 = levels[next_level].filter_at(dirs)
                    c = c0 + (c1 - c0) * frac[sel][None, :, :]
                acc += np.einsum("tsc,s->tc", c, weights[sel])
            out[start:start + batch] = acc
        dst.face(face)[...] = out.reshape(dst.dim, dst.dim, 3)


def roughness_filter(dst: Cubemap, levels: list[Cubemap], linear_roughness: float,
                     sample_count: int) -> None:
    """GGX prefilter of the environment for one roughness level.

    ``linear_roughness`` is alpha (perceptual roughness squared). At 0 the
    base level is copied texel for texel.
    """
    base = levels[0]
    if linear_roughness == 0:
        for face in Face:
            dst.face(face)[...] = base.sample_at(dst.texel_directions(face))
        return

    u = hammersley_sequence(sample_count)
    h = hemisphere_importance_sample_dggx(u, linear_roughness)
    # V == N, so L = reflect(-N, H); N.H == L.H
    noh = h[:, 2]
    nol = 2.0 * noh * noh - 1.0
    light = np.stack([2.0 * noh * h[:, 0], 2.0 * noh * h[:, 1], nol], axis=-1)

    keep = nol > 0
    light, noh, nol = light[keep], noh[keep], nol[keep]
    if len(light) == 0:
        dst.set_faces(np.zeros((6, dst.dim, dst.dim, 3), dtype=np.float32))
        return

    pdf = distribution_ggx(noh, linear_roughness) / 4.0
    omega_s = 1.0 / (sample_count * pdf)
    lods = _source_lod(omega_s, base.dim, len(levels) - 1)
    weights = nol / nol.sum()
    _integrate(dst, levels, light, weights, lods)


def diffuse_irradiance(dst: Cubemap, levels: list[Cubemap], sample_count: int) -> None:
    """Cosine-weighted hemisphere average, i.e. irradiance / pi.

    All samples read the same source level, picked from the mean solid
    angle a sample stands for.
    """
    u = hammersley_sequence(sample_count)
    light = hemisphere_cos_sample(u)
    omega_s = 2.0 * pi / sample_count
    lod = _source_lod(omega_s, levels[0].dim, len(levels) - 1)
    lods = np.full(len(light), lod)
    weights = np.full(len(light), 1.0 / len(light))
    _integrate(dst, levels, light, weights, lods)


def prefilter_sample_counts(base: int, num_levels: int, start_level: int = 2) -> list[int]:
    """Samples per prefiltered level.

    Smaller levels cost 4x less per level, so from ``start_level`` on each
    level doubles the previous count.
    """
    counts = []
    n = base
    for level in range(num_levels):
        if level >= start_level:
            n *= 2
        counts.append(n)
    return counts


def lod_to_linear_roughness(level: int, num_levels: int) -> float:
    """``lod = sqrt(linear_roughness)`` across the mip chain."""
    lod = min(max(level / max(num_levels - 1.0, 1.0), 0.0), 1.0)
    return lod * lod


# ---------------------------------------------------------------------------
# DFG look-up table
# ---------------------------------------------------------------------------

def _dfv(nov: np.ndarray, linear_roughness: float, u: np.ndarray,
         multiscatter: bool) -> np.ndarray:
    """Integrate one LUT row; ``nov`` is ``(w,)``, returns ``(w, 2)``."""
    n = len(u)
    h = hemisphere_importance_sample_dggx(u, linear_roughness)  # (s, 3)
    v = np.stack([np.sqrt(1.0 - nov * nov), np.zeros_like(nov), nov], axis=-1)  # (w, 3)

    voh_raw = v @ h.T  # (w, s)
    light_z = 2.0 * voh_raw * h[None, :, 2] - v[:, 2:3]
    voh = np.clip(voh_raw, 0.0, 1.0)
    nol = np.clip(light_z, 0.0, 1.0)
    noh = np.clip(h[:, 2], 0.0, 1.0)[None, :]

    valid = nol > 0
    with np.errstate(divide="ignore", invalid="ignore"):
        vis = visibility(nov[:, None], nol, linear_roughness) * nol * (voh / noh)
    vis = np.where(valid, vis, 0.0)
    fc = (1.0 - voh) ** 5

    if multiscatter:
        # Er() = mix(DFG.x, DFG.y, f0) with f90 = 1
        r = np.stack([(vis * fc).sum(axis=1), vis.sum(axis=1)], axis=-1)
    else:
        # Er() = f0 * DFG.x + f90 * DFG.y
        r = np.stack([(vis * (1.0 - fc)).sum(axis=1), (vis * fc).sum(axis=1)], axis=-1)
    return r * (4.0 / n)


def dfg(size: int, multiscatter: bool = False, sample_count: int = 1024) -> np.ndarray:
    """Split-sum DFG LUT, ``(size, size, 3)`` float32 with blue left at 0.

    Columns map ``NoV`` in ``(0, 1]``; rows map ``sqrt(linear_roughness)``
    from 1 at the top to 0 at the bottom.
    """
    u = hammersley_sequence(sample_count)
    nov = np.clip((np.arange(size, dtype=np.float64) + 0.5) / size, 0.0, 1.0)
    lut = np.zeros((size, size, 3), dtype=np.float32)
    for y in range(size):
        coord = np.clip((size - y - 0.5) / size, 0.0, 1.0)
        linear_roughness = coord * coord
        lut[y, :, :2] = _dfv(nov, linear_roughness, u, multiscatter)
    return lut


def brdf_lobe(cm: Cubemap, linear_roughness: float) -> None:
    """Render the GGX lobe seen from +Z (V = N) into ``cm``."""
    a = max(linear_roughness, 1e-3)
    for face in Face:
        light = cm.texel_directions(face)
        half = light + np.array([0.0, 0.0, 1.0])
        half /= np.maximum(np.linalg.norm(half, axis=-1, keepdims=True), 1e-12)
        nol = light[..., 2]
        value = np.where(nol > 0, distribution_ggx(half[..., 2], a) / 4.0, 0.0)
        cm.face(face)[...] = value[..., np.newaxis]
