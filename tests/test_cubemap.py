"""Tests for the cubemap view: addressing, seams and solid angles."""

from math import pi

import numpy as np
import pytest

from cmgen.cubemap.cubemap import Face, create_cubemap, face_name, solid_angle
from cmgen.errors import InputError


def _random_cubemap(dim, seed=0):
    cm = create_cubemap(dim)
    rng = np.random.default_rng(seed)
    cm.set_faces(rng.random((6, dim, dim, 3)).astype(np.float32))
    return cm


class TestCreation:
    def test_raster_shape(self):
        cm = create_cubemap(8)
        assert cm.raster.shape == (30, 40, 3)
        assert cm.raster.dtype == np.float32

    def test_non_power_of_two_rejected(self):
        with pytest.raises(InputError):
            create_cubemap(12)

    def test_faces_are_views(self):
        cm = create_cubemap(4)
        cm.face(Face.PZ)[...] = 2.0
        assert np.shares_memory(cm.face(Face.PZ), cm.raster)
        # PZ sits in the cell at column 1, row 1
        assert np.all(cm.raster[7:11, 7:11] == 2.0)
        assert cm.raster.sum() == pytest.approx(2.0 * 16 * 3)

    def test_face_names(self):
        assert [face_name(f) for f in Face] == ["px", "nx", "py", "ny", "pz", "nz"]


class TestAddressing:
    @pytest.mark.parametrize("dim", [1, 2, 4, 16])
    def test_texel_direction_bijection(self, dim):
        cm = create_cubemap(dim)
        c = np.arange(dim)
        xx, yy = np.meshgrid(c, c)
        for face in Face:
            dirs = cm.direction_for(face, xx + 0.5, yy + 0.5)
            f, x, y = cm.texel_for(dirs)
            assert np.all(f == int(face))
            np.testing.assert_array_equal(x, xx)
            np.testing.assert_array_equal(y, yy)

    def test_directions_are_unit(self):
        cm = create_cubemap(8)
        for face in Face:
            norms = np.linalg.norm(cm.texel_directions(face), axis=-1)
            np.testing.assert_allclose(norms, 1.0, atol=1e-12)

    def test_face_centers_look_along_axes(self):
        cm = create_cubemap(2)
        expected = {
            Face.PX: (1, 0, 0), Face.NX: (-1, 0, 0),
            Face.PY: (0, 1, 0), Face.NY: (0, -1, 0),
            Face.PZ: (0, 0, 1), Face.NZ: (0, 0, -1),
        }
        for face, axis in expected.items():
            np.testing.assert_allclose(cm.direction_for(face, 1.0, 1.0), axis, atol=1e-12)

    def test_top_left_of_pz(self):
        # x grows along +X, y grows downwards (towards -Y)
        d = create_cubemap(2).direction_for(Face.PZ, 0.0, 0.0)
        assert d[0] < 0 and d[1] > 0 and d[2] > 0


class TestSampling:
    def test_sample_at_returns_texel(self):
        cm = _random_cubemap(4)
        d = cm.direction_for(Face.NY, 2.5, 1.5)
        np.testing.assert_array_equal(cm.sample_at(d), cm.face(Face.NY)[1, 2])

    def test_filter_constant(self):
        cm = create_cubemap(4)
        cm.raster[...] = 0.75
        rng = np.random.default_rng(1)
        dirs = rng.normal(size=(200, 3))
        np.testing.assert_allclose(cm.filter_at(dirs), 0.75, atol=1e-6)

    def test_filter_at_texel_center_is_exact(self):
        cm = _random_cubemap(4)
        cm.make_seamless()
        d = cm.direction_for(Face.PX, 1.5, 2.5)
        np.testing.assert_allclose(cm.filter_at(d), cm.face(Face.PX)[2, 1], atol=1e-6)


class TestSeams:
    def test_make_seamless_idempotent(self):
        cm = _random_cubemap(8)
        cm.make_seamless()
        once = cm.raster.copy()
        cm.make_seamless()
        np.testing.assert_array_equal(cm.raster, once)

    def test_interior_untouched(self):
        cm = _random_cubemap(4)
        before = cm.faces()
        cm.make_seamless()
        np.testing.assert_array_equal(cm.faces(), before)

    def test_pz_left_border_is_nx_right_column(self):
        cm = _random_cubemap(8)
        cm.make_seamless()
        border = cm.face_with_border(Face.PZ)[1:-1, 0]
        np.testing.assert_array_equal(border, cm.face(Face.NX)[:, -1])

    def test_pz_top_border_is_py_bottom_row(self):
        cm = _random_cubemap(8)
        cm.make_seamless()
        border = cm.face_with_border(Face.PZ)[0, 1:-1]
        np.testing.assert_array_equal(border, cm.face(Face.PY)[-1, :])


class TestSolidAngle:
    @pytest.mark.parametrize("dim", [1, 4, 32])
    def test_sums_to_full_sphere(self, dim):
        assert 6.0 * solid_angle(dim).sum() == pytest.approx(4.0 * pi, rel=1e-12)

    def test_corners_smaller_than_center(self):
        w = solid_angle(16)
        assert w[0, 0] < w[8, 8]
        np.testing.assert_allclose(w, w.T)
