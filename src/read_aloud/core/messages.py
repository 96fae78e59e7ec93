"""Command and reply types exchanged with the reading coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .coordinator import ReadingCoordinator, Surface
from .sources import StaticPageText
from .types import BoundingBox, VoiceRef


@dataclass(frozen=True)
class StartReading:
    tab: int
    text: str


@dataclass(frozen=True)
class StopReading:
    pass


@dataclass(frozen=True)
class UpdateSpeechSettings:
    rate: Optional[float] = None
    voice: Optional[VoiceRef] = None


@dataclass(frozen=True)
class ReadPage:
    tab: int
    text: str
    selection: str = ""


@dataclass(frozen=True)
class ReadPdf:
    tab: int
    ref: str


@dataclass(frozen=True)
class ReadComic:
    tab: int
    panels: Tuple[str, ...]
    chapter_url: Optional[str] = None


@dataclass(frozen=True)
class TogglePlayPause:
    surface: Surface


@dataclass(frozen=True)
class NextItem:
    surface: Surface


@dataclass(frozen=True)
class PreviousItem:
    surface: Surface


@dataclass(frozen=True)
class StopSurface:
    surface: Surface


@dataclass(frozen=True)
class RecognizePanel:
    ref: str


@dataclass(frozen=True)
class PrefetchPanel:
    ref: str


@dataclass(frozen=True)
class TabClosed:
    tab: int


@dataclass(frozen=True)
class GetUiState:
    pass


Command = Union[
    StartReading,
    StopReading,
    UpdateSpeechSettings,
    ReadPage,
    ReadPdf,
    ReadComic,
    TogglePlayPause,
    NextItem,
    PreviousItem,
    StopSurface,
    RecognizePanel,
    PrefetchPanel,
    TabClosed,
    GetUiState,
]


@dataclass(frozen=True)
class Ack:
    ok: bool = True
    error: Optional[str] = None


@dataclass(frozen=True)
class UiState:
    speaking: bool
    active_tab: Optional[int]
    active_surface: Optional[str]
    rate: float
    voice: Optional[VoiceRef]
    surfaces: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PanelText:
    lines: List[str]
    boxes: List[BoundingBox]
    line_boxes: List[int]


Reply = Union[Ack, UiState, PanelText]


async def dispatch(coordinator: ReadingCoordinator, message: Command) -> Reply:
    """Run ``message`` against ``coordinator`` and build its reply."""
    if isinstance(message, StartReading):
        return Ack(coordinator.start_reading(message.tab, message.text))
    if isinstance(message, StopReading):
        coordinator.stop_reading()
        return Ack()
    if isinstance(message, UpdateSpeechSettings):
        applied = False
        if message.rate is not None:
            applied = coordinator.set_rate(message.rate) or applied
        if message.voice is not None:
            applied = coordinator.set_voice(message.voice) or applied
        return Ack(applied)
    if isinstance(message, ReadPage):
        return Ack(coordinator.read_page(message.tab, StaticPageText(message.text, message.selection)))
    if isinstance(message, ReadPdf):
        position = await coordinator.open_pdf(message.tab, message.ref)
        return Ack(position is not None)
    if isinstance(message, ReadComic):
        position = await coordinator.open_comic(message.tab, list(message.panels), message.chapter_url)
        return Ack(position is not None)
    if isinstance(message, TogglePlayPause):
        return Ack(await coordinator.toggle(message.surface))
    if isinstance(message, NextItem):
        return Ack(await coordinator.next(message.surface))
    if isinstance(message, PreviousItem):
        return Ack(await coordinator.previous(message.surface))
    if isinstance(message, StopSurface):
        return Ack(coordinator.stop_surface(message.surface))
    if isinstance(message, RecognizePanel):
        result = await coordinator.recognize_panel(message.ref)
        return PanelText(result.lines, result.boxes, result.line_boxes)
    if isinstance(message, PrefetchPanel):
        return Ack(await coordinator.prefetch_panel(message.ref))
    if isinstance(message, TabClosed):
        coordinator.tab_closed(message.tab)
        return Ack()
    if isinstance(message, GetUiState):
        return UiState(**coordinator.ui_state())
    raise TypeError(f"unsupported message type {type(message).__name__}")
