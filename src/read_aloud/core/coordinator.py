"""Reading positions per surface and the glue between OCR, speech and highlighting."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit

from loguru import logger
from PySide6.QtCore import QObject, Signal

from ..config.schemas import SpeechConfig
from .errors import ReadAloudError
from .pipeline import OcrPipeline
from .sources import HighlightSink, PageTextSource, PdfTextSource
from .speech import SpeechSession, StopEvent, StopReason
from .types import OcrResult, VoiceRef

_CHAPTER_RE = re.compile(r"(chapter|ch|episode|ep)([-_./]?)(\d+)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+")


class Surface(str, Enum):
    PAGE = "page"
    PDF = "pdf"
    COMIC = "comic"


@dataclass
class ReadingPosition:
    surface: Surface
    tab: int
    items: List[str]
    index: int = 0
    playing: bool = False
    continuous: bool = True
    chapter_url: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def at_end(self) -> bool:
        return self.index >= self.total - 1

    def snapshot(self) -> Dict[str, object]:
        return {
            "tab": self.tab,
            "index": self.index,
            "total": self.total,
            "playing": self.playing,
            "continuous": self.continuous,
        }


def _bump(match: "re.Match[str]", group: int) -> str:
    digits = match.group(group)
    return str(int(digits) + 1).zfill(len(digits))


def infer_next_chapter_url(url: str) -> Optional[str]:
    """Best-effort URL of the following chapter.

    Increments the number after ``chapter``/``ch``/``episode``/``ep`` in the
    path, else the last number in the path. Zero padding is preserved.
    """
    parts = urlsplit(url)
    path = parts.path
    labelled = list(_CHAPTER_RE.finditer(path))
    if labelled:
        m = labelled[-1]
        path = path[:m.start(3)] + _bump(m, 3) + path[m.end(3):]
    else:
        numbers = list(_NUMBER_RE.finditer(path))
        if not numbers:
            return None
        m = numbers[-1]
        path = path[:m.start()] + _bump(m, 0) + path[m.end():]
    return urlunsplit(parts._replace(path=path))


@dataclass
class _Spoken:
    """What is being spoken right now, for highlight routing."""

    surface: Surface
    tab: int
    result: Optional[OcrResult] = None
    line_starts: List[int] = field(default_factory=list)

    def active_box(self, offset: int) -> int:
        if self.result is None or not self.line_starts:
            return -1
        line = 0
        for i, start in enumerate(self.line_starts):
            if start <= offset:
                line = i
        return self.result.line_boxes[line] if line < len(self.result.line_boxes) else -1


class ReadingCoordinator(QObject):
    """Keeps one reading position per surface and one active speaking target."""

    operation_failed = Signal(str, str)
    position_changed = Signal(str, object)
    navigate_requested = Signal(int, str)

    def __init__(
        self,
        session: SpeechSession,
        pipeline: OcrPipeline,
        sink: HighlightSink,
        pdf_source: Optional[PdfTextSource] = None,
        speech: Optional[SpeechConfig] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        speech = speech or SpeechConfig()
        self._session = session
        self._pipeline = pipeline
        self._sink = sink
        self._pdf = pdf_source or PdfTextSource()
        self._rate = speech.rate
        self._voice = VoiceRef.from_config(speech.voice)
        self._continuous = speech.continuous
        self._positions: Dict[Surface, ReadingPosition] = {}
        self._spoken: Optional[_Spoken] = None
        self._sequence = 0
        self._tasks: Set[asyncio.Task] = set()
        session.boundary.connect(self._on_boundary)
        session.stopped.connect(self._on_stopped)

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def voice(self) -> Optional[VoiceRef]:
        return self._voice

    @property
    def active_tab(self) -> Optional[int]:
        return self._spoken.tab if self._spoken else None

    def position(self, surface: Surface) -> Optional[ReadingPosition]:
        return self._positions.get(surface)

    # -- plain speech ------------------------------------------------------

    def start_reading(self, tab: int, text: str) -> bool:
        self._sequence += 1
        return self._speak(_Spoken(Surface.PAGE, tab), text)

    def stop_reading(self) -> None:
        self._sequence += 1
        self._session.stop()

    def read_page(self, tab: int, source: PageTextSource) -> bool:
        text = source.selection().strip() or source.visible_text().strip()
        if not text:
            self.operation_failed.emit(Surface.PAGE.value, "no readable text on page")
            return False
        self._positions[Surface.PAGE] = ReadingPosition(
            Surface.PAGE, tab, [text], playing=True, continuous=self._continuous
        )
        self._sequence += 1
        return self._speak(_Spoken(Surface.PAGE, tab), text)

    # -- documents ---------------------------------------------------------

    async def open_pdf(self, tab: int, ref: str) -> Optional[ReadingPosition]:
        try:
            pages = await self._pdf.load(ref)
        except ReadAloudError as exc:
            logger.error("Cannot open PDF {}: {}", ref, exc)
            self.operation_failed.emit(Surface.PDF.value, str(exc))
            return None
        if not pages:
            self.operation_failed.emit(Surface.PDF.value, "PDF has no pages")
            return None
        position = ReadingPosition(Surface.PDF, tab, pages, continuous=self._continuous)
        self._positions[Surface.PDF] = position
        await self.play(Surface.PDF)
        return position

    async def open_comic(
        self, tab: int, panel_refs: List[str], chapter_url: Optional[str] = None
    ) -> Optional[ReadingPosition]:
        if not panel_refs:
            self.operation_failed.emit(Surface.COMIC.value, "no comic panels found")
            return None
        position = ReadingPosition(
            Surface.COMIC, tab, list(panel_refs), continuous=self._continuous, chapter_url=chapter_url
        )
        self._positions[Surface.COMIC] = position
        await self.play(Surface.COMIC)
        return position

    async def recognize_panel(self, ref: str) -> OcrResult:
        return await self._pipeline.recognize_source(ref)

    async def prefetch_panel(self, ref: str) -> bool:
        return await self._pipeline.prefetch(ref)

    # -- transport ---------------------------------------------------------

    async def play(self, surface: Surface) -> bool:
        position = self._positions.get(surface)
        if position is None:
            return False
        position.playing = True
        return await self._play_current(position)

    def pause(self, surface: Surface) -> bool:
        position = self._positions.get(surface)
        if position is None:
            return False
        position.playing = False
        self._sequence += 1
        if self._spoken is not None and self._spoken.surface == surface:
            self._session.stop()
        self.position_changed.emit(surface.value, position.snapshot())
        return True

    async def toggle(self, surface: Surface) -> bool:
        position = self._positions.get(surface)
        if position is None:
            return False
        if position.playing:
            return self.pause(surface)
        return await self.play(surface)

    async def next(self, surface: Surface) -> bool:
        return await self._step(surface, 1)

    async def previous(self, surface: Surface) -> bool:
        return await self._step(surface, -1)

    def stop_surface(self, surface: Surface) -> bool:
        position = self._positions.pop(surface, None)
        if position is None:
            return False
        self._sequence += 1
        if self._spoken is not None and self._spoken.surface == surface:
            self._session.stop()
        self._sink.clear(position.tab)
        logger.info("Stopped {} reading", surface.value)
        return True

    def tab_closed(self, tab: int) -> None:
        if self._spoken is not None and self._spoken.tab == tab:
            self._sequence += 1
            self._session.stop()
        for surface in [s for s, p in self._positions.items() if p.tab == tab]:
            del self._positions[surface]
        if self._spoken is not None and self._spoken.tab == tab:
            self._spoken = None
        self._sink.clear(tab)

    # -- settings ----------------------------------------------------------

    def set_rate(self, rate: float) -> bool:
        self._rate = rate
        return self._session.update_settings(rate=rate)

    def set_voice(self, voice: VoiceRef) -> bool:
        self._voice = voice
        return self._session.update_settings(voice=voice)

    def ui_state(self) -> Dict[str, object]:
        return {
            "speaking": self._session.speaking,
            "active_tab": self.active_tab,
            "active_surface": self._spoken.surface.value if self._spoken else None,
            "rate": self._rate,
            "voice": self._voice,
            "surfaces": {s.value: p.snapshot() for s, p in self._positions.items()},
        }

    async def wait_idle(self) -> None:
        """Wait for background advancement and prefetch tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- internals ---------------------------------------------------------

    async def _step(self, surface: Surface, delta: int) -> bool:
        position = self._positions.get(surface)
        if position is None:
            return False
        target = position.index + delta
        if not 0 <= target < position.total:
            return False
        position.index = target
        self.position_changed.emit(surface.value, position.snapshot())
        if position.playing:
            return await self._play_current(position)
        return True

    async def _play_current(self, position: ReadingPosition) -> bool:
        self._sequence += 1
        sequence = self._sequence
        spoken = _Spoken(position.surface, position.tab)
        if position.surface == Surface.COMIC:
            ref = position.items[position.index]
            try:
                result = await self._pipeline.recognize_source(ref)
            except ReadAloudError as exc:
                if sequence == self._sequence:
                    logger.error("Panel {} failed: {}", position.index, exc)
                    position.playing = False
                    self.operation_failed.emit(Surface.COMIC.value, str(exc))
                return False
            if sequence != self._sequence:
                logger.debug("Discarding superseded recognition of panel {}", position.index)
                return False
            spoken.result = result
            offset = 0
            for line in result.lines:
                spoken.line_starts.append(offset)
                offset += len(line) + 1
            self._sink.show_boxes(position.tab, result.boxes, result.line_boxes[0] if result.line_boxes else -1)
            if position.index + 1 < position.total:
                self._spawn(self._pipeline.prefetch(position.items[position.index + 1]))
            text = result.text
        else:
            text = position.items[position.index]

        self.position_changed.emit(position.surface.value, position.snapshot())
        if not text.strip():
            logger.info("{} item {} has no text", position.surface.value, position.index + 1)
            if position.playing and position.continuous:
                self._spawn(self._advance(position.surface))
            return False
        return self._speak(spoken, text)

    def _speak(self, spoken: _Spoken, text: str) -> bool:
        previous = self._spoken
        self._session.speak(text, self._rate, self._voice)
        if previous is not None and previous.tab != spoken.tab:
            self._sink.clear(previous.tab)
        if previous is not None and previous.surface != spoken.surface:
            interrupted = self._positions.get(previous.surface)
            if interrupted is not None:
                interrupted.playing = False
        if not self._session.speaking:
            self._spoken = None
            return False
        self._spoken = spoken
        return True

    async def _advance(self, surface: Surface) -> None:
        position = self._positions.get(surface)
        if position is None or not position.playing:
            return
        if not position.at_end:
            position.index += 1
            await self._play_current(position)
            return
        position.playing = False
        self.position_changed.emit(surface.value, position.snapshot())
        if surface == Surface.COMIC and position.chapter_url:
            next_url = infer_next_chapter_url(position.chapter_url)
            if next_url:
                logger.info("End of chapter, navigating to {}", next_url)
                self.navigate_requested.emit(position.tab, next_url)
                return
        logger.info("Finished reading {}", surface.value)

    def _on_boundary(self, offset: int) -> None:
        spoken = self._spoken
        if spoken is None:
            return
        if spoken.result is not None:
            self._sink.show_boxes(spoken.tab, spoken.result.boxes, spoken.active_box(offset))
        else:
            self._sink.highlight(spoken.tab, offset)

    def _on_stopped(self, event: StopEvent) -> None:
        spoken, self._spoken = self._spoken, None
        if spoken is None:
            return
        self._sink.clear(spoken.tab)
        position = self._positions.get(spoken.surface)
        if position is None or position.tab != spoken.tab:
            return
        if event.reason in (StopReason.ENDED, StopReason.EXHAUSTED) and position.playing and position.continuous:
            self._spawn(self._advance(spoken.surface))
            return
        if event.reason == StopReason.ERROR:
            self.operation_failed.emit(spoken.surface.value, event.error or "speech error")
        position.playing = False
        self.position_changed.emit(spoken.surface.value, position.snapshot())

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("Background reading task failed")
