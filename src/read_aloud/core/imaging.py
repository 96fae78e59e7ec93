"""Raster image container and tensor preparation helpers."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from PIL import Image

from .types import BoundingBox


@dataclass(frozen=True)
class RasterImage:
    """RGBA pixels (H, W, 4, uint8) plus the encoded bytes they came from."""

    pixels: np.ndarray
    data: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"expected HxWx4 RGBA pixels, got shape {self.pixels.shape}")

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @classmethod
    def from_bytes(cls, data: bytes) -> "RasterImage":
        with Image.open(io.BytesIO(data)) as img:
            return cls(pixels=np.asarray(img.convert("RGBA")).copy(), data=data)

    @classmethod
    def from_pil(cls, img: Image.Image) -> "RasterImage":
        return cls(pixels=np.asarray(img.convert("RGBA")).copy())

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RasterImage":
        """Wrap a grayscale, RGB or RGBA array (copied)."""
        arr = np.asarray(array)
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr], axis=-1)
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr.astype(np.uint8), alpha], axis=-1)
        return cls(pixels=arr.astype(np.uint8).copy())

    def rgb(self) -> np.ndarray:
        return np.ascontiguousarray(self.pixels[:, :, :3])

    def to_pil(self) -> Image.Image:
        return Image.fromarray(self.pixels)

    def crop(self, box: BoundingBox) -> "RasterImage":
        x, y, w, h = box.pixel_rect()
        x = min(x, self.width - 1)
        y = min(y, self.height - 1)
        x2 = min(self.width, x + w)
        y2 = min(self.height, y + h)
        return RasterImage(pixels=self.pixels[y:y2, x:x2].copy())

    def rows(self, top: int, height: int) -> "RasterImage":
        return RasterImage(pixels=self.pixels[top:top + height].copy())

    def rotate90(self) -> "RasterImage":
        """Rotate 90 degrees counter-clockwise (vertical text becomes horizontal)."""
        return RasterImage(pixels=np.ascontiguousarray(np.rot90(self.pixels)))


@dataclass(frozen=True)
class Letterbox:
    """Geometry of an aspect-preserving resize into a square canvas."""

    scale: float
    pad_x: int
    pad_y: int
    source_width: int
    source_height: int

    def to_source(self, x: float, y: float) -> tuple[float, float]:
        return (x - self.pad_x) / self.scale, (y - self.pad_y) / self.scale


def letterbox(image: RasterImage, size: int, fill: int = 0) -> tuple[np.ndarray, Letterbox]:
    """Resize ``image`` into a ``size`` x ``size`` RGB canvas, centred and padded."""
    iw, ih = image.width, image.height
    scale = min(size / iw, size / ih)
    nw = max(1, int(round(iw * scale)))
    nh = max(1, int(round(ih * scale)))
    pad_x = (size - nw) // 2
    pad_y = (size - nh) // 2

    resized = Image.fromarray(image.rgb()).resize((nw, nh), Image.BILINEAR)
    canvas = np.full((size, size, 3), fill, dtype=np.uint8)
    canvas[pad_y:pad_y + nh, pad_x:pad_x + nw] = np.asarray(resized)
    return canvas, Letterbox(scale=scale, pad_x=pad_x, pad_y=pad_y, source_width=iw, source_height=ih)


def resize_to_height(image: RasterImage, height: int, max_width: int, fill: int = 255) -> np.ndarray:
    """Resize to a fixed height keeping aspect; paste onto a ``max_width`` canvas."""
    scale = height / image.height
    width = min(max_width, max(1, int(round(image.width * scale))))
    resized = Image.fromarray(image.rgb()).resize((width, height), Image.BILINEAR)
    canvas = np.full((height, max_width, 3), fill, dtype=np.uint8)
    canvas[:, :width] = np.asarray(resized)
    return canvas


def to_chw_tensor(
    rgb: np.ndarray,
    mean: Sequence[float],
    std: Sequence[float],
    scale: float = 1.0,
) -> np.ndarray:
    """HWC uint8 RGB into a normalized ``[1, 3, H, W]`` float32 tensor.

    Each channel becomes ``(pixel * scale - mean) / std``.
    """
    arr = rgb.astype(np.float32) * scale
    arr = (arr - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
    return np.ascontiguousarray(arr.transpose(2, 0, 1)[np.newaxis, ...])
