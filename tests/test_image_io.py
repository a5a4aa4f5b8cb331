"""Tests for image decoding and encoding."""

import numpy as np
import pytest
from PIL import Image

from cmgen.codec.image_io import (
    linear_to_srgb,
    load_image,
    read_hdr,
    save_image,
    srgb_to_linear,
    write_hdr,
)
from cmgen.codec.rgbm import decode_rgbm
from cmgen.config import ImageFormat
from cmgen.errors import ImageDecodeError


def _hdr_image(h, w, seed=0):
    # red stays the largest channel so RGBE red bytes are >= 128
    rng = np.random.default_rng(seed)
    img = rng.random((h, w, 3)).astype(np.float32)
    img[..., 0] = 1.0 + 3.0 * img[..., 0]
    return img


def _close_rgbe(out, img):
    tol = img.max(axis=-1, keepdims=True) / 64.0
    assert np.all(np.abs(out - img) <= tol)


class TestSrgb:
    def test_round_trip(self):
        c = np.linspace(0.0, 1.0, 33)
        np.testing.assert_allclose(srgb_to_linear(linear_to_srgb(c)), c, atol=1e-12)

    def test_known_values(self):
        assert linear_to_srgb(np.array(0.0)) == 0.0
        assert linear_to_srgb(np.array(1.0)) == pytest.approx(1.0)
        assert srgb_to_linear(np.array(0.5)) == pytest.approx(0.214, abs=1e-3)


class TestRadiance:
    def test_rle_round_trip(self, tmp_path):
        img = _hdr_image(5, 40)
        path = tmp_path / "a.hdr"
        write_hdr(path, img)
        out = read_hdr(path)
        assert out.shape == (5, 40, 3)
        assert out.dtype == np.float32
        _close_rgbe(out, img)

    def test_long_scanline(self, tmp_path):
        img = _hdr_image(2, 300)
        path = tmp_path / "long.hdr"
        write_hdr(path, img)
        _close_rgbe(read_hdr(path), img)

    def test_flat_round_trip(self, tmp_path):
        img = _hdr_image(3, 4)
        path = tmp_path / "small.hdr"
        write_hdr(path, img)
        _close_rgbe(read_hdr(path), img)

    def test_black_stays_black(self, tmp_path):
        path = tmp_path / "black.hdr"
        write_hdr(path, np.zeros((4, 16, 3), np.float32))
        assert read_hdr(path).max() == 0.0

    def test_truncated(self, tmp_path):
        path = tmp_path / "cut.hdr"
        write_hdr(path, _hdr_image(8, 16))
        path.write_bytes(path.read_bytes()[:-50])
        with pytest.raises(ImageDecodeError):
            read_hdr(path)

    def test_bad_resolution_line(self, tmp_path):
        path = tmp_path / "bad.hdr"
        path.write_bytes(b"#?RADIANCE\nFORMAT=32-bit_rle_rgbe\n\n+Y 2 -X 2\n")
        with pytest.raises(ImageDecodeError):
            read_hdr(path)


class TestLoadSave:
    def test_png_round_trip(self, tmp_path):
        img = np.random.default_rng(1).random((4, 6, 3)).astype(np.float32)
        path = tmp_path / "a.png"
        save_image(path, ImageFormat.PNG, img)
        out = load_image(path)
        assert out.shape == (4, 6, 3)
        np.testing.assert_allclose(out, img, atol=0.01)

    def test_png_is_srgb_encoded(self, tmp_path):
        path = tmp_path / "gray.png"
        save_image(path, ImageFormat.PNG, np.full((1, 1, 3), 0.214, np.float32))
        with Image.open(path) as im:
            assert abs(im.getpixel((0, 0))[0] - 128) <= 1

    def test_linear_png(self, tmp_path):
        path = tmp_path / "lut.png"
        save_image(path, ImageFormat.PNG, np.full((1, 1, 3), 0.5, np.float32), linear=True)
        with Image.open(path) as im:
            assert im.getpixel((0, 0)) == (128, 128, 128)

    def test_rgbm_png(self, tmp_path):
        img = np.full((2, 2, 3), 4.0, np.float32)
        path = tmp_path / "env.png"
        save_image(path, ImageFormat.RGBM, img)
        with Image.open(path) as im:
            assert im.mode == "RGBA"
            rgbm = np.asarray(im)
        np.testing.assert_allclose(decode_rgbm(rgbm), img, rtol=0.02)

    def test_hdr_dispatch(self, tmp_path):
        img = _hdr_image(2, 8)
        path = tmp_path / "x.hdr"
        save_image(path, ImageFormat.HDR, img)
        _close_rgbe(load_image(path), img)

    def test_grayscale_expanded(self, tmp_path):
        path = tmp_path / "g.png"
        Image.fromarray(np.full((2, 4), 255, np.uint8)).save(path)
        out = load_image(path)
        assert out.shape == (2, 4, 3)
        np.testing.assert_allclose(out, 1.0)

    def test_garbage(self, tmp_path):
        path = tmp_path / "noise.png"
        path.write_bytes(b"definitely not an image")
        with pytest.raises(ImageDecodeError):
            load_image(path)
