"""Speech-bubble and text-region detection."""

from __future__ import annotations

from typing import Awaitable, Callable, List, Protocol

import numpy as np
from loguru import logger

from ..config.schemas import DetectorConfig
from .errors import DetectionError, ModelLoadError
from .geometry import mask_to_boxes, merge_overlapping, non_max_suppression
from .imaging import Letterbox, RasterImage, letterbox, to_chw_tensor
from .runtime import TensorRuntime, run_model
from .types import BoundingBox

ModelProvider = Callable[[], Awaitable[TensorRuntime]]

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class RegionDetector(Protocol):
    async def detect(self, image: RasterImage) -> List[BoundingBox]:
        ...


def window_origins(height: int, size: int, overlap: float) -> List[tuple[int, int]]:
    """Vertical ``(top, height)`` windows covering an image of ``height`` rows.

    Windows advance by ``floor(size * (1 - overlap))`` and stop at the first
    window that reaches the bottom row.
    """
    stride = max(1, int(size * (1.0 - overlap)))
    windows: List[tuple[int, int]] = []
    for top in range(0, height, stride):
        chunk = min(size, height - top)
        windows.append((top, chunk))
        if top + chunk >= height:
            break
    return windows


class BubbleDetector:
    """Sliding-window single-stage detector with non-max suppression.

    The model takes a fixed ``[1, 3, S, S]`` input and returns ``[1, C, N]``
    candidates whose rows are ``cx, cy, w, h`` followed by class scores.
    """

    def __init__(self, model: ModelProvider, config: DetectorConfig | None = None) -> None:
        self._model = model
        self._config = config or DetectorConfig()

    async def detect(self, image: RasterImage) -> List[BoundingBox]:
        cfg = self._config
        try:
            model = await self._model()
        except ModelLoadError as exc:
            raise DetectionError(f"bubble detector unavailable: {exc}") from exc

        candidates: List[BoundingBox] = []
        for top, chunk in window_origins(image.height, cfg.input_size, cfg.window_overlap):
            window = image.rows(top, chunk)
            canvas, geometry = letterbox(window, cfg.input_size)
            tensor = to_chw_tensor(canvas, cfg.mean, cfg.std)
            try:
                output = await run_model(model, tensor)
            except Exception as exc:
                raise DetectionError(f"bubble detector failed on window y={top}: {exc}") from exc
            found = self.decode(output, geometry)
            candidates.extend(
                BoundingBox.clamped(
                    b.min_x, b.min_y + top, b.max_x, b.max_y + top,
                    image.width, image.height, score=b.score,
                )
                for b in found
            )
            logger.debug("Window y={} h={}: {} candidates", top, chunk, len(found))

        boxes = non_max_suppression(candidates, cfg.iou_threshold)
        logger.info("Bubble detector: {} boxes from {} candidates", len(boxes), len(candidates))
        return boxes

    def decode(self, output: np.ndarray, geometry: Letterbox) -> List[BoundingBox]:
        """Turn raw ``[1, C, N]`` output into window-local boxes (after NMS)."""
        data = np.asarray(output, dtype=np.float32)
        if data.ndim == 3:
            data = data[0]
        if data.ndim != 2 or data.shape[0] < 5:
            raise DetectionError(f"unexpected detector output shape {np.shape(output)}")

        scores = data[4] if data.shape[0] == 5 else data[4:].max(axis=0)
        keep = np.nonzero(scores >= self._config.score_threshold)[0]
        boxes: List[BoundingBox] = []
        for i in keep:
            cx, cy, w, h = (float(v) for v in data[:4, i])
            x_c, y_c = geometry.to_source(cx, cy)
            w_c, h_c = w / geometry.scale, h / geometry.scale
            boxes.append(
                BoundingBox.clamped(
                    x_c - w_c / 2, y_c - h_c / 2, x_c + w_c / 2, y_c + h_c / 2,
                    geometry.source_width, geometry.source_height, score=float(scores[i]),
                )
            )
        return non_max_suppression(boxes, self._config.iou_threshold)


class TextRegionDetector:
    """Detector for segmentation models that emit a text probability map."""

    def __init__(self, model: ModelProvider, config: DetectorConfig | None = None) -> None:
        self._model = model
        self._config = config or DetectorConfig(kind="text")

    async def detect(self, image: RasterImage) -> List[BoundingBox]:
        cfg = self._config
        try:
            model = await self._model()
        except ModelLoadError as exc:
            raise DetectionError(f"text detector unavailable: {exc}") from exc

        canvas, geometry = letterbox(image, cfg.input_size)
        tensor = to_chw_tensor(canvas, IMAGENET_MEAN, IMAGENET_STD, scale=1.0 / 255.0)
        try:
            output = await run_model(model, tensor)
        except Exception as exc:
            raise DetectionError(f"text detector failed: {exc}") from exc

        probs = np.asarray(output, dtype=np.float32)
        if probs.ndim == 4:
            probs = probs[0, 0]
        elif probs.ndim == 3:
            probs = probs[0]
        else:
            raise DetectionError(f"unexpected detector output shape {probs.shape}")

        mask = probs > cfg.mask_threshold
        raw = merge_overlapping(mask_to_boxes(mask, cfg.min_component_area), cfg.merge_iou)
        # probability map may be smaller than the letterboxed input
        ratio_x = cfg.input_size / probs.shape[1]
        ratio_y = cfg.input_size / probs.shape[0]
        boxes = []
        for b in raw:
            x1, y1 = geometry.to_source(b.min_x * ratio_x, b.min_y * ratio_y)
            x2, y2 = geometry.to_source(b.max_x * ratio_x, b.max_y * ratio_y)
            boxes.append(
                BoundingBox.clamped(
                    round(x1), round(y1), round(x2), round(y2), image.width, image.height, score=b.score
                )
            )
        logger.info("Text detector: {} regions", len(boxes))
        return boxes
