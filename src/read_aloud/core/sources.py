"""Inputs (images, PDF pages, page text) and the highlight output seam."""

from __future__ import annotations

import asyncio
import base64
import binascii
from pathlib import Path
from typing import List, Optional, Protocol, Sequence
from urllib.parse import unquote_to_bytes

import fitz  # PyMuPDF
import requests
from loguru import logger

from ..config.schemas import TimeoutConfig
from .errors import ImageFetchError, PdfLoadError
from .imaging import RasterImage
from .types import BoundingBox


class PageTextSource(Protocol):
    def selection(self) -> str:
        ...

    def visible_text(self) -> str:
        ...


class HighlightSink(Protocol):
    def highlight(self, tab: int, char_index: int) -> None:
        ...

    def clear(self, tab: int) -> None:
        ...

    def show_boxes(self, tab: int, boxes: Sequence[BoundingBox], active_index: int) -> None:
        ...


def _decode_data_url(ref: str, error: type) -> bytes:
    header, sep, payload = ref.partition(",")
    if not sep:
        raise error("malformed data URL")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise error(f"bad base64 payload: {exc}") from exc
    return unquote_to_bytes(payload)


def read_bytes(ref: str, timeout: float, error: type = ImageFetchError) -> bytes:
    """Bytes behind an ``http(s)`` URL, a ``data:`` URL or a local path."""
    if ref.startswith("data:"):
        return _decode_data_url(ref, error)
    if ref.startswith(("http://", "https://")):
        try:
            response = requests.get(ref, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise error(f"failed to fetch {ref}: {exc}") from exc
        return response.content
    path = Path(ref[len("file://"):] if ref.startswith("file://") else ref)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise error(f"failed to read {path}: {exc}") from exc


class ImageSource:
    def __init__(self, timeouts: Optional[TimeoutConfig] = None) -> None:
        self._timeout = (timeouts or TimeoutConfig()).image_fetch

    async def fetch(self, ref: str) -> RasterImage:
        data = await asyncio.to_thread(read_bytes, ref, self._timeout)
        try:
            image = RasterImage.from_bytes(data)
        except Exception as exc:
            raise ImageFetchError(f"cannot decode image {ref[:80]}: {exc}") from exc
        logger.debug("Fetched {}x{} image ({} bytes)", image.width, image.height, len(data))
        return image


class PdfTextSource:
    """Ordered per-page text of a PDF document."""

    def __init__(self, timeouts: Optional[TimeoutConfig] = None) -> None:
        self._timeout = (timeouts or TimeoutConfig()).image_fetch

    async def load(self, ref: str) -> List[str]:
        data = await asyncio.to_thread(read_bytes, ref, self._timeout, PdfLoadError)
        return await asyncio.to_thread(self.extract_pages, data)

    @staticmethod
    def extract_pages(data: bytes) -> List[str]:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise PdfLoadError(f"cannot open PDF: {exc}") from exc
        try:
            if doc.page_count == 0:
                raise PdfLoadError("PDF has no pages")
            pages = [" ".join(page.get_text("text").split()) for page in doc]
        finally:
            doc.close()
        logger.info("Loaded PDF with {} pages", len(pages))
        return pages


class StaticPageText:
    """Page text held in memory."""

    def __init__(self, text: str, selected: str = "") -> None:
        self._text = text
        self._selected = selected

    def selection(self) -> str:
        return self._selected

    def visible_text(self) -> str:
        return self._text


class LogHighlightSink:
    """Highlight sink for headless use: reports highlight changes to the log."""

    def highlight(self, tab: int, char_index: int) -> None:
        logger.debug("tab {}: highlight at {}", tab, char_index)

    def clear(self, tab: int) -> None:
        logger.debug("tab {}: highlight cleared", tab)

    def show_boxes(self, tab: int, boxes: Sequence[BoundingBox], active_index: int) -> None:
        logger.debug("tab {}: {} boxes, active {}", tab, len(boxes), active_index)
