"""Long-lived Tesseract OCR worker process.

The worker is started once and reused. Requests travel over a
multiprocessing queue tagged with a job id; a reader thread hands each reply
back to the event loop, where it resolves the matching future in a
:class:`JobRegistry`. Jobs are serialized, one in flight at a time.
"""

from __future__ import annotations

import asyncio
import multiprocessing as mp
import queue
import threading
import uuid
from typing import Any, Dict, Optional

import numpy as np
import pytesseract
from loguru import logger
from PIL import Image

from ..config.schemas import RecognitionConfig, TimeoutConfig
from .errors import WorkerError, WorkerTimeoutError
from .imaging import RasterImage
from .preprocess import preprocess_for_ocr
from .types import BoundingBox, RecognizedLine

_STOP = "stop"


def read_words(pixels: np.ndarray, lang: str, psm: int, oem: int) -> Dict[str, Any]:
    """Run Tesseract over RGBA ``pixels``; return joined text and mean confidence."""
    data = pytesseract.image_to_data(
        Image.fromarray(pixels),
        lang=lang,
        config=f"--psm {psm} --oem {oem}",
        output_type=pytesseract.Output.DICT,
    )
    words = []
    confs = []
    for text, conf in zip(data.get("text", []), data.get("conf", [])):
        text = (text or "").strip()
        conf = float(conf)
        # structural rows (blocks, lines) carry conf -1
        if not text or conf < 0:
            continue
        words.append(text)
        confs.append(conf)
    confidence = (sum(confs) / len(confs)) / 100.0 if confs else 0.0
    return {"text": " ".join(words), "confidence": confidence}


def _handle(request: Dict[str, Any], lang: str, psm: int, oem: int) -> Any:
    action = request["action"]
    if action == "ping":
        return {"version": str(pytesseract.get_tesseract_version())}
    if action == "recognize":
        pixels = request["pixels"]
        rect = request.get("rect")
        if rect is not None:
            x, y, w, h = rect
            pixels = pixels[y:y + h, x:x + w]
        return read_words(np.ascontiguousarray(pixels), lang, psm, oem)
    if action == "preprocess":
        return preprocess_for_ocr(RasterImage(pixels=request["pixels"])).pixels
    raise ValueError(f"unknown action {action!r}")


def worker_main(requests: "mp.Queue", responses: "mp.Queue", lang: str, psm: int, oem: int) -> None:
    """Entry point of the worker process."""
    while True:
        request = requests.get()
        if request is None or request.get("action") == _STOP:
            break
        job_id = request.get("id")
        try:
            responses.put({"id": job_id, "ok": True, "result": _handle(request, lang, psm, oem)})
        except Exception as exc:
            responses.put({"id": job_id, "ok": False, "error": f"{type(exc).__name__}: {exc}"})


class JobRegistry:
    """Pending job futures keyed by job id."""

    def __init__(self) -> None:
        self._pending: Dict[str, asyncio.Future] = {}

    def register(self, job_id: str) -> asyncio.Future:
        if job_id in self._pending:
            raise WorkerError(f"duplicate job id {job_id}")
        future = asyncio.get_running_loop().create_future()
        self._pending[job_id] = future
        return future

    def resolve(self, job_id: str, result: Any) -> bool:
        future = self._pending.pop(job_id, None)
        if future is None or future.done():
            return False
        future.set_result(result)
        return True

    def reject(self, job_id: str, error: BaseException) -> bool:
        future = self._pending.pop(job_id, None)
        if future is None or future.done():
            return False
        future.set_exception(error)
        return True

    def discard(self, job_id: str) -> None:
        self._pending.pop(job_id, None)

    def fail_all(self, error: BaseException) -> int:
        pending, self._pending = self._pending, {}
        failed = 0
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
                failed += 1
        return failed

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._pending


class TesseractWorker:
    """Async facade over the Tesseract worker process."""

    def __init__(
        self,
        recognition: Optional[RecognitionConfig] = None,
        timeouts: Optional[TimeoutConfig] = None,
    ) -> None:
        self._recognition = recognition or RecognitionConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._registry = JobRegistry()
        self._lock = asyncio.Lock()
        self._process: Optional[mp.process.BaseProcess] = None
        self._requests: Optional["mp.Queue"] = None
        self._responses: Optional["mp.Queue"] = None
        self._reader: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closing = threading.Event()
        self.version: Optional[str] = None

    @property
    def alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    async def start(self) -> "TesseractWorker":
        if self.alive:
            return self
        ctx = mp.get_context("spawn")
        self._requests = ctx.Queue()
        self._responses = ctx.Queue()
        cfg = self._recognition
        self._process = ctx.Process(
            target=worker_main,
            args=(self._requests, self._responses, cfg.tesseract_lang, cfg.tesseract_psm, cfg.tesseract_oem),
            name="tesseract-worker",
            daemon=True,
        )
        self._loop = asyncio.get_running_loop()
        self._closing.clear()
        self._process.start()
        self._reader = threading.Thread(target=self._read_responses, name="tesseract-reader", daemon=True)
        self._reader.start()
        try:
            reply = await self._call("ping", {}, self._timeouts.worker_start)
        except BaseException:
            await self.aclose()
            raise
        self.version = reply.get("version")
        logger.info("Tesseract worker started (pid {}, tesseract {})", self._process.pid, self.version)
        return self

    async def recognize_region(self, image: RasterImage, box: Optional[BoundingBox] = None) -> RecognizedLine:
        """OCR the whole image, or only ``box``; the worker does the slicing."""
        payload: Dict[str, Any] = {"pixels": image.pixels}
        if box is not None:
            payload["rect"] = box.pixel_rect()
        reply = await self._call("recognize", payload, self._timeouts.worker_job)
        return RecognizedLine(text=reply["text"], confidence=float(reply["confidence"]), backend="tesseract")

    async def preprocess(self, image: RasterImage) -> RasterImage:
        pixels = await self._call("preprocess", {"pixels": image.pixels}, self._timeouts.preprocess)
        return RasterImage(pixels=pixels)

    def health(self) -> Dict[str, Any]:
        return {
            "alive": self.alive,
            "pid": self._process.pid if self._process is not None else None,
            "tesseract": self.version,
            "pending": len(self._registry),
        }

    async def aclose(self) -> None:
        self._closing.set()
        if self._requests is not None and self.alive:
            self._requests.put({"action": _STOP})
        if self._process is not None:
            await asyncio.to_thread(self._process.join, 5)
            if self._process.is_alive():
                logger.warning("Tesseract worker did not exit, terminating")
                self._process.terminate()
        if self._reader is not None:
            await asyncio.to_thread(self._reader.join, 2)
        self._registry.fail_all(WorkerError("tesseract worker closed"))
        self._process = None
        self._reader = None
        logger.info("Tesseract worker stopped")

    async def _call(self, action: str, payload: Dict[str, Any], timeout: float) -> Any:
        async with self._lock:
            if not self.alive or self._requests is None:
                raise WorkerError("tesseract worker is not running")
            job_id = uuid.uuid4().hex
            future = self._registry.register(job_id)
            try:
                self._requests.put({"id": job_id, "action": action, **payload})
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError as exc:
                raise WorkerTimeoutError(f"tesseract {action} timed out after {timeout}s") from exc
            finally:
                self._registry.discard(job_id)

    def _read_responses(self) -> None:
        assert self._responses is not None and self._loop is not None
        while not self._closing.is_set():
            try:
                message = self._responses.get(timeout=0.5)
            except queue.Empty:
                if self._process is not None and not self._process.is_alive() and not self._closing.is_set():
                    logger.error("Tesseract worker exited unexpectedly")
                    self._loop.call_soon_threadsafe(
                        self._registry.fail_all, WorkerError("tesseract worker exited")
                    )
                    return
                continue
            self._loop.call_soon_threadsafe(self._dispatch, message)

    def _dispatch(self, message: Dict[str, Any]) -> None:
        job_id = message.get("id")
        if message.get("ok"):
            delivered = self._registry.resolve(job_id, message.get("result"))
        else:
            delivered = self._registry.reject(job_id, WorkerError(message.get("error", "worker error")))
        if not delivered:
            logger.debug("Dropping reply for unknown or expired job {}", job_id)
