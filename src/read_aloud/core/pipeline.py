"""OCR pipeline: cache lookup, detection, recognition and cache fill."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np
from loguru import logger

from ..config.manager import ConfigManager
from ..config.schemas import RecognizerMode, TimeoutConfig
from .cache import ContentCache, image_hash
from .detector import BubbleDetector, RegionDetector, TextRegionDetector
from .errors import DetectionError, ReadAloudError
from .imaging import RasterImage
from .recognizer import CtcRecognizer, load_dictionary
from .runtime import OnnxModel, RuntimeContext
from .selector import RecognizerSelector
from .sources import ImageSource
from .tesseract_worker import TesseractWorker
from .types import BoundingBox, CacheEntry, OcrResult


class OcrPipeline:
    """Turn an image into ordered text lines, reusing cached results."""

    def __init__(
        self,
        detector: RegionDetector,
        selector: RecognizerSelector,
        mode_provider: Callable[[], RecognizerMode],
        cache: Optional[ContentCache] = None,
        image_source: Optional[ImageSource] = None,
        timeouts: Optional[TimeoutConfig] = None,
        context: Optional[RuntimeContext] = None,
    ) -> None:
        self._detector = detector
        self._selector = selector
        self._mode_provider = mode_provider
        self._cache = cache
        self._timeouts = timeouts or TimeoutConfig()
        self._source = image_source or ImageSource(self._timeouts)
        self._context = context

    @property
    def cache(self) -> Optional[ContentCache]:
        return self._cache

    async def recognize(self, image: RasterImage, content_hash: Optional[str] = None) -> OcrResult:
        key = content_hash or image_hash(image)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("OCR cache hit {}", key)
                return cached.to_result()

        boxes = await self._detect(image)
        if not boxes:
            logger.info("No text regions found")
            return OcrResult()

        mode = self._mode_provider()
        started = time.perf_counter()
        recognition = await self._selector.recognize(image, boxes, mode)
        logger.info(
            "Recognized {} of {} boxes with {} (mode {}) in {:.2f}s",
            len(recognition.lines), len(boxes), recognition.backend, mode, time.perf_counter() - started,
        )
        result = OcrResult(lines=recognition.lines, boxes=list(boxes), line_boxes=recognition.line_boxes)
        if self._cache is not None and not result.is_empty():
            self._cache.put(
                CacheEntry(
                    hash=key,
                    version=self._cache.version,
                    lines=result.lines,
                    boxes=result.boxes,
                    line_boxes=result.line_boxes,
                )
            )
        return result

    async def recognize_source(self, ref: str) -> OcrResult:
        image = await self._source.fetch(ref)
        return await self.recognize(image, image_hash(image, ref))

    async def prefetch(self, ref: str) -> bool:
        """Warm the cache for ``ref``; True when an entry exists afterwards."""
        try:
            image = await self._source.fetch(ref)
        except ReadAloudError as exc:
            logger.warning("Prefetch of {} failed: {}", ref[:80], exc)
            return False
        key = image_hash(image, ref)
        if self._cache is not None and self._cache.get(key) is not None:
            return True
        result = await self.recognize(image, key)
        return not result.is_empty() and self._cache is not None

    async def warmup(self) -> Dict[str, Any]:
        """Push a blank image through detection and recognition to load models."""
        blank = RasterImage.from_array(np.full((48, 160, 3), 255, dtype=np.uint8))
        report: Dict[str, Any] = {}
        started = time.perf_counter()
        try:
            await self._detector.detect(blank)
            report["detector"] = round(time.perf_counter() - started, 3)
            started = time.perf_counter()
            box = BoundingBox(min_x=0, min_y=0, max_x=blank.width - 1, max_y=blank.height - 1)
            await self._selector.recognize(blank, [box], "ppocr")
            report["recognizer"] = round(time.perf_counter() - started, 3)
            report["ok"] = True
        except ReadAloudError as exc:
            logger.error("Warmup failed: {}", exc)
            report.update(ok=False, error=str(exc))
        return report

    def health(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {"mode": self._mode_provider()}
        if self._cache is not None:
            info["cache"] = {"version": self._cache.version, "entries": len(self._cache)}
        if self._context is not None:
            info["resources"] = self._context.status()
            for name in ("detector", "recognizer"):
                model = self._context.resource(name).peek() if name in info["resources"] else None
                if model is not None and hasattr(model, "describe"):
                    info[name] = model.describe()
            worker = self._context.resource("tesseract").peek() if "tesseract" in info["resources"] else None
            if worker is not None:
                info["tesseract"] = worker.health()
        return info

    async def _detect(self, image: RasterImage) -> List[BoundingBox]:
        try:
            return await asyncio.wait_for(self._detector.detect(image), self._timeouts.detection)
        except asyncio.TimeoutError:
            logger.warning("Detection timed out after {}s", self._timeouts.detection)
        except DetectionError as exc:
            logger.warning("Detection failed: {}", exc)
        except Exception as exc:
            logger.opt(exception=exc).warning("Detector raised unexpectedly: {}", exc)
        return []


def create_pipeline(manager: ConfigManager, context: RuntimeContext) -> OcrPipeline:
    """Wire models, worker and cache from configuration into a pipeline."""
    config = manager.config
    models = config.models

    async def load_detector() -> OnnxModel:
        name = models.text_detector if config.detector.kind == "text" else models.bubble_detector
        return await asyncio.to_thread(OnnxModel, manager.resolve_model(name))

    async def load_recognizer() -> OnnxModel:
        return await asyncio.to_thread(OnnxModel, manager.resolve_model(models.recognizer))

    async def load_tokens() -> List[str]:
        return await asyncio.to_thread(
            load_dictionary, manager.resolve_model(models.dictionary), config.recognition.use_space_char
        )

    async def start_worker() -> TesseractWorker:
        return await TesseractWorker(config.recognition, config.timeouts).start()

    detector_model = context.register("detector", load_detector)
    recognizer_model = context.register("recognizer", load_recognizer)
    dictionary = context.register("dictionary", load_tokens)
    worker = context.register("tesseract", start_worker)

    detector_cls = TextRegionDetector if config.detector.kind == "text" else BubbleDetector
    detector = detector_cls(detector_model.get, config.detector)
    ctc = CtcRecognizer(recognizer_model.get, dictionary.get, config.recognition)
    selector = RecognizerSelector(ctc, worker.get, config.recognition, config.quality)
    cache = ContentCache(manager.cache_path(), config.cache.max_entries) if config.cache.enabled else None
    return OcrPipeline(
        detector,
        selector,
        mode_provider=lambda: manager.recognizer_mode,
        cache=cache,
        timeouts=config.timeouts,
        context=context,
    )
