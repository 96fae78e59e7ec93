"""CTC sequence-model text recognizer."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

import numpy as np
from loguru import logger

from ..config.schemas import RecognitionConfig
from .errors import ModelLoadError, RecognitionError
from .imaging import RasterImage, resize_to_height, to_chw_tensor
from .runtime import TensorRuntime, run_model
from .types import BoundingBox, RecognizedLine

BLANK = 0


class TextRecognizer(Protocol):
    async def recognize_box(self, image: RasterImage, box: BoundingBox) -> RecognizedLine:
        ...


def load_dictionary(path: Path, use_space_char: bool = True) -> List[str]:
    """One token per line; blank lines dropped; optional trailing space token."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ModelLoadError(f"cannot read dictionary {path}: {exc}") from exc
    tokens = [line.rstrip("\r\n") for line in raw.splitlines()]
    tokens = [t for t in tokens if t]
    if use_space_char and " " not in tokens:
        tokens.append(" ")
    logger.info("Loaded {} dictionary tokens from {}", len(tokens), path.name)
    return tokens


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def ctc_greedy_decode(output: np.ndarray, dictionary: Sequence[str]) -> RecognizedLine:
    """Greedy CTC decoding of a ``[1, T, C]`` or ``[T, C]`` score matrix.

    Class 0 is blank; class ``k`` maps to ``dictionary[k - 1]``. Repeated
    classes collapse unless separated by another class. Each emitted character
    is scored by the sigmoid of its top-1/top-2 margin and the line confidence
    is their mean.
    """
    scores = np.asarray(output, dtype=np.float32)
    if scores.ndim == 3 and scores.shape[0] == 1:
        scores = scores[0]
    if scores.ndim != 2:
        raise RecognitionError(f"unexpected recognizer output shape {np.shape(output)}")

    chars: List[str] = []
    confs: List[float] = []
    last = -1
    for step in scores:
        top = int(np.argmax(step))
        if top != BLANK and top != last:
            idx = top - 1
            if 0 <= idx < len(dictionary):
                best = float(step[top])
                if step.shape[0] > 1:
                    second = float(np.max(np.delete(step, top)))
                else:
                    second = best - 10.0
                chars.append(dictionary[idx])
                confs.append(_sigmoid(best - second))
        last = top
    confidence = sum(confs) / len(confs) if confs else 0.0
    return RecognizedLine(text="".join(chars), confidence=confidence, backend="ppocr")


class CtcRecognizer:
    """Recognize one box at a time with a fixed-height CTC model."""

    def __init__(
        self,
        model: Callable[[], Awaitable[TensorRuntime]],
        dictionary: Callable[[], Awaitable[List[str]]],
        config: Optional[RecognitionConfig] = None,
    ) -> None:
        self._model = model
        self._dictionary = dictionary
        self._config = config or RecognitionConfig()

    async def recognize_box(self, image: RasterImage, box: BoundingBox) -> RecognizedLine:
        crop = image.crop(box)
        best = await self._run(crop)
        cfg = self._config
        if cfg.try_rotate and crop.height > crop.width * cfg.vertical_ratio:
            rotated = await self._run(crop.rotate90())
            logger.debug(
                "Vertical box {}: upright {:.2f} vs rotated {:.2f}",
                box.pixel_rect(), best.confidence, rotated.confidence,
            )
            if rotated.confidence > best.confidence:
                best = rotated
        return best

    async def _run(self, crop: RasterImage) -> RecognizedLine:
        cfg = self._config
        model = await self._model()
        dictionary = await self._dictionary()
        canvas = resize_to_height(crop, cfg.image_height, cfg.max_width)
        tensor = to_chw_tensor(canvas, (0.5, 0.5, 0.5), (0.5, 0.5, 0.5), scale=1.0 / 255.0)
        try:
            output = await run_model(model, tensor)
        except Exception as exc:
            raise RecognitionError(f"recognizer inference failed: {exc}") from exc
        return ctc_greedy_decode(output, dictionary)
