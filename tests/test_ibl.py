"""Tests for sampling helpers, prefiltering, irradiance and the DFG LUT."""

import numpy as np
import pytest

from cmgen.cubemap.cubemap import Face, create_cubemap
from cmgen.cubemap.mipmap import generate_mipmaps
from cmgen.ibl.filters import (
    brdf_lobe,
    dfg,
    diffuse_irradiance,
    lod_to_linear_roughness,
    prefilter_sample_counts,
    roughness_filter,
)
from cmgen.ibl.sampling import (
    hammersley_sequence,
    hemisphere_cos_sample,
    hemisphere_importance_sample_dggx,
    radical_inverse_vdc,
    tangent_frame,
)


def _levels(dim, value=None, seed=0):
    base = create_cubemap(dim)
    if value is None:
        rng = np.random.default_rng(seed)
        base.set_faces(rng.random((6, dim, dim, 3)).astype(np.float32))
    else:
        base.raster[...] = value
    base.make_seamless()
    return generate_mipmaps(base)


class TestSampling:
    def test_radical_inverse(self):
        np.testing.assert_allclose(radical_inverse_vdc(np.array([0, 1, 2, 3])),
                                   [0.0, 0.5, 0.25, 0.75])

    def test_hammersley(self):
        u = hammersley_sequence(4)
        assert u.shape == (4, 2)
        np.testing.assert_allclose(u[:, 0], [0.0, 0.25, 0.5, 0.75])
        np.testing.assert_allclose(u[:, 1], [0.0, 0.5, 0.25, 0.75])

    def test_samples_are_unit_and_upper_hemisphere(self):
        u = hammersley_sequence(256)
        for h in (hemisphere_importance_sample_dggx(u, 0.3), hemisphere_cos_sample(u)):
            np.testing.assert_allclose(np.linalg.norm(h, axis=-1), 1.0, atol=1e-12)
            assert np.all(h[:, 2] >= 0.0)

    def test_low_roughness_concentrates_around_normal(self):
        u = hammersley_sequence(256)
        assert hemisphere_importance_sample_dggx(u, 0.001)[:, 2].min() > 0.999

    @pytest.mark.parametrize("n", [(0.0, 0.0, 1.0), (0.0, 0.0, -1.0), (0.6, 0.0, 0.8)])
    def test_tangent_frame_orthonormal(self, n):
        n = np.array([n])
        t, b = tangent_frame(n)
        m = np.stack([t[0], b[0], n[0]])
        np.testing.assert_allclose(m @ m.T, np.eye(3), atol=1e-12)


class TestRoughnessFilter:
    def test_zero_roughness_is_identity(self):
        levels = _levels(8)
        dst = create_cubemap(8)
        roughness_filter(dst, levels, 0.0, 64)
        np.testing.assert_array_equal(dst.faces(), levels[0].faces())

    def test_constant_environment(self):
        levels = _levels(8, value=1.5)
        dst = create_cubemap(4)
        roughness_filter(dst, levels, 0.5, 64)
        np.testing.assert_allclose(dst.faces(), 1.5, rtol=1e-5)

    def test_tiny_roughness_close_to_base(self):
        levels = _levels(8)
        dst = create_cubemap(8)
        roughness_filter(dst, levels, 1e-4, 32)
        np.testing.assert_allclose(dst.faces(), levels[0].faces(), atol=0.05)

    def test_blur_reduces_variance(self):
        levels = _levels(16)
        dst = create_cubemap(8)
        roughness_filter(dst, levels, 0.8, 128)
        assert dst.faces().std() < levels[0].faces().std()


class TestDiffuseIrradiance:
    def test_constant_environment(self):
        levels = _levels(8, value=0.25)
        dst = create_cubemap(4)
        diffuse_irradiance(dst, levels, 64)
        np.testing.assert_allclose(dst.faces(), 0.25, rtol=1e-5)

    def test_hemisphere_light(self):
        base = create_cubemap(16)
        base.face(Face.PY)[...] = 1.0
        base.make_seamless()
        levels = generate_mipmaps(base)
        dst = create_cubemap(4)
        diffuse_irradiance(dst, levels, 256)
        assert dst.face(Face.PY).mean() > dst.face(Face.PX).mean() > dst.face(Face.NY).mean()


class TestSampleCounts:
    def test_growth_from_level_two(self):
        assert prefilter_sample_counts(1024, 5) == [1024, 1024, 2048, 4096, 8192]

    def test_growth_start_is_tunable(self):
        assert prefilter_sample_counts(16, 3, start_level=0) == [32, 64, 128]
        assert prefilter_sample_counts(16, 3, start_level=10) == [16, 16, 16]

    def test_lod_to_roughness(self):
        assert lod_to_linear_roughness(0, 9) == 0.0
        assert lod_to_linear_roughness(8, 9) == 1.0
        assert lod_to_linear_roughness(4, 9) == pytest.approx(0.25)
        assert lod_to_linear_roughness(0, 1) == 0.0


class TestDfg:
    def test_shape_and_range(self):
        lut = dfg(8, sample_count=256)
        assert lut.shape == (8, 8, 3)
        assert lut.dtype == np.float32
        assert np.all(lut[..., 2] == 0.0)
        assert np.all(lut[..., :2] >= 0.0)

    def test_smooth_surface_conserves_energy(self):
        lut = dfg(8, sample_count=256)
        # bottom row is the lowest roughness, right column grazing-free
        assert lut[-1, -1, 0] + lut[-1, -1, 1] == pytest.approx(1.0, abs=0.05)

    def test_rough_surface_loses_energy(self):
        lut = dfg(8, sample_count=256)
        assert lut[0, 0, 0] + lut[0, 0, 1] < lut[-1, -1, 0] + lut[-1, -1, 1]

    def test_multiscatter(self):
        lut = dfg(8, multiscatter=True, sample_count=256)
        assert np.all(lut[..., 1] >= lut[..., 0])
        assert np.all(lut[..., 1] > 0.0)


class TestBrdfLobe:
    def test_lobe_points_along_z(self):
        cm = create_cubemap(8)
        brdf_lobe(cm, 0.25)
        assert np.all(cm.face(Face.NZ) == 0.0)
        pz = cm.face(Face.PZ)
        np.testing.assert_allclose(pz[3:5, 3:5], pz.max(), rtol=1e-6)
        assert cm.face(Face.PX).max() < pz.max()
