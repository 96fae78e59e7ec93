"""Tests for raster image helpers."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from read_aloud.core.imaging import RasterImage, letterbox, resize_to_height, to_chw_tensor
from read_aloud.core.types import BoundingBox


def test_from_bytes_keeps_encoded_data() -> None:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 4), (10, 20, 30)).save(buffer, format="PNG")

    image = RasterImage.from_bytes(buffer.getvalue())

    assert (image.width, image.height) == (8, 4)
    assert image.data == buffer.getvalue()
    assert tuple(image.pixels[0, 0]) == (10, 20, 30, 255)


def test_letterbox_centres_and_maps_back() -> None:
    image = RasterImage.from_array(np.full((100, 200, 3), 255, dtype=np.uint8))

    canvas, geometry = letterbox(image, 64)

    assert canvas.shape == (64, 64, 3)
    assert geometry.scale == pytest.approx(0.32)
    assert geometry.pad_x == 0
    assert geometry.pad_y == 16
    assert canvas[0, 0].tolist() == [0, 0, 0]
    assert canvas[32, 32].tolist() == [255, 255, 255]
    assert geometry.to_source(32, 32) == pytest.approx((100.0, 50.0))


def test_crop_uses_inclusive_bounds_and_copies() -> None:
    pixels = (np.arange(10 * 10 * 4) % 256).astype(np.uint8).reshape(10, 10, 4)
    image = RasterImage(pixels=pixels)

    crop = image.crop(BoundingBox(min_x=2, min_y=3, max_x=5, max_y=4))

    assert (crop.width, crop.height) == (4, 2)
    crop.pixels[:] = 0
    assert image.pixels[3, 2].any()


def test_rotate90_turns_tall_into_wide() -> None:
    image = RasterImage.from_array(np.zeros((30, 10, 3), dtype=np.uint8))

    assert (image.rotate90().width, image.rotate90().height) == (30, 10)


def test_resize_to_height_pads_with_white() -> None:
    image = RasterImage.from_array(np.zeros((24, 40, 3), dtype=np.uint8))

    canvas = resize_to_height(image, 48, 320)

    assert canvas.shape == (48, 320, 3)
    assert canvas[:, :80].max() == 0
    assert canvas[:, 80:].min() == 255


def test_to_chw_tensor_normalizes() -> None:
    rgb = np.full((2, 3, 3), 255, dtype=np.uint8)

    tensor = to_chw_tensor(rgb, (0.5, 0.5, 0.5), (0.5, 0.5, 0.5), scale=1 / 255)

    assert tensor.shape == (1, 3, 2, 3)
    assert tensor.dtype == np.float32
    assert np.allclose(tensor, 1.0)
