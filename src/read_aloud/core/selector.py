"""Choose, and fall back between, the recognizer backends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence

from loguru import logger

from ..config.schemas import QualityConfig, RecognitionConfig, RecognizerMode
from .errors import ReadAloudError, WorkerError
from .imaging import RasterImage
from .quality import QualityScore, accept_line, score_text
from .recognizer import TextRecognizer
from .types import BoundingBox, RecognizedLine

BoxRecognizer = Callable[[RasterImage, BoundingBox], Awaitable[RecognizedLine]]


class RegionReader(Protocol):
    async def recognize_region(self, image: RasterImage, box: Optional[BoundingBox] = None) -> RecognizedLine:
        ...

    async def preprocess(self, image: RasterImage) -> RasterImage:
        ...


@dataclass
class Recognition:
    """Accepted lines with the index of the box each came from."""

    backend: str
    lines: List[str] = field(default_factory=list)
    line_boxes: List[int] = field(default_factory=list)
    quality: Optional[QualityScore] = None


class RecognizerSelector:
    def __init__(
        self,
        ctc: TextRecognizer,
        worker: Callable[[], Awaitable[RegionReader]],
        recognition: Optional[RecognitionConfig] = None,
        quality: Optional[QualityConfig] = None,
    ) -> None:
        self._ctc = ctc
        self._worker = worker
        self._recognition = recognition or RecognitionConfig()
        self._quality = quality or QualityConfig()

    async def recognize(
        self, image: RasterImage, boxes: Sequence[BoundingBox], mode: RecognizerMode
    ) -> Recognition:
        if mode == "tesseract":
            return await self._tesseract_boxes(image, boxes)
        ppocr = await self._ppocr_boxes(image, boxes)
        if not ppocr.quality.low_quality:
            return ppocr

        if mode == "hybrid":
            fallback = await self._tesseract_boxes(image, boxes)
        elif self._recognition.fallback_to_tesseract and boxes:
            fallback = await self._tesseract_whole(image)
        else:
            return ppocr

        if fallback.quality.better_than(ppocr.quality):
            logger.info(
                "Using {} result ({} letters) over ppocr ({} letters)",
                fallback.backend, fallback.quality.letters, ppocr.quality.letters,
            )
            return fallback
        return ppocr

    async def _ppocr_boxes(self, image: RasterImage, boxes: Sequence[BoundingBox]) -> Recognition:
        if self._recognition.parallel_boxes:
            results = await asyncio.gather(
                *(self._guarded(self._ctc.recognize_box, image, box, i) for i, box in enumerate(boxes))
            )
        else:
            results = [await self._guarded(self._ctc.recognize_box, image, box, i) for i, box in enumerate(boxes)]
        return self._collect("ppocr", results)

    async def _tesseract_boxes(self, image: RasterImage, boxes: Sequence[BoundingBox]) -> Recognition:
        try:
            worker = await self._worker()
        except ReadAloudError as exc:
            logger.warning("Tesseract unavailable: {}", exc)
            return self._collect("tesseract", [])
        results = [await self._guarded(worker.recognize_region, image, box, i) for i, box in enumerate(boxes)]
        return self._collect("tesseract", results)

    async def _tesseract_whole(self, image: RasterImage) -> Recognition:
        try:
            worker = await self._worker()
            source = image
            if self._recognition.preprocess_full_image:
                try:
                    source = await worker.preprocess(image)
                except WorkerError as exc:
                    logger.warning("Preprocessing failed, using original image: {}", exc)
            line = await worker.recognize_region(source, None)
        except ReadAloudError as exc:
            logger.warning("Whole-image Tesseract fallback failed: {}", exc)
            return self._collect("tesseract-page", [])
        return self._collect("tesseract-page", [(-1, line)])

    async def _guarded(self, recognize: BoxRecognizer, image: RasterImage, box: BoundingBox, index: int):
        try:
            return index, await recognize(image, box)
        except Exception as exc:
            logger.warning("Recognition failed for box {} {}: {}", index, box.pixel_rect(), exc)
            return index, None

    def _collect(self, backend: str, results) -> Recognition:
        recognition = Recognition(backend=backend)
        for index, line in results:
            if line is None:
                continue
            if not accept_line(line, self._recognition):
                logger.debug("Rejected {} line {!r} ({:.2f})", backend, line.text, line.confidence)
                continue
            recognition.lines.append(line.text.strip())
            recognition.line_boxes.append(index)
        recognition.quality = score_text(recognition.lines, self._quality)
        return recognition
