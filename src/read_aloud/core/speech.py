"""Cancellable, resumable speech session."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

from loguru import logger
from PySide6.QtCore import QObject, Signal

from .errors import SpeechEngineError
from .types import VoiceRef


class SpeechStatus(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"
    INTERRUPTED = "interrupted"
    ENDED = "ended"
    ERRORED = "errored"


class StopReason(str, Enum):
    ENDED = "ended"  # the utterance finished by itself
    STOPPED = "stopped"  # explicit stop()
    ERROR = "error"
    EXHAUSTED = "exhausted"  # settings changed with nothing left to say


@dataclass(frozen=True)
class StopEvent:
    reason: StopReason
    error: Optional[str] = None


@dataclass(frozen=True)
class UtteranceCallbacks:
    """Engine-to-session notifications for one utterance.

    ``on_boundary`` receives a character offset relative to the utterance
    text. ``on_error`` receives ``"interrupted"`` when the utterance was
    cancelled.
    """

    on_boundary: Callable[[int], None]
    on_end: Callable[[], None]
    on_error: Callable[[str], None]


class SpeechEngine(Protocol):
    def speak(
        self, text: str, rate: float, voice: Optional[VoiceRef], callbacks: UtteranceCallbacks
    ) -> None:
        ...

    def cancel(self) -> None:
        ...

    def voices(self) -> List[VoiceRef]:
        ...


class SpeechSession(QObject):
    """Speaks one text at a time and tracks how far it got.

    The cursor only moves forward. Changing rate or voice mid-utterance
    restarts speech at the cursor; boundaries of the new utterance are
    reported as offsets into the original text.
    """

    boundary = Signal(int)
    stopped = Signal(object)
    state_changed = Signal(str)

    def __init__(self, engine: SpeechEngine, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._engine = engine
        self._text = ""
        self._cursor = 0
        self._base = 0
        self._rate = 1.0
        self._voice: Optional[VoiceRef] = None
        self._status = SpeechStatus.IDLE
        # bumped whenever an utterance is superseded; stale callbacks compare unequal
        self._generation = 0

    @property
    def text(self) -> str:
        return self._text

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def voice(self) -> Optional[VoiceRef]:
        return self._voice

    @property
    def status(self) -> SpeechStatus:
        return self._status

    @property
    def speaking(self) -> bool:
        return self._status == SpeechStatus.SPEAKING

    def speak(self, text: str, rate: float = 1.0, voice: Optional[VoiceRef] = None) -> None:
        if self._status == SpeechStatus.SPEAKING:
            self._cancel_engine()
        self._cursor = 0
        self._rate = rate
        self._voice = voice
        if not text.strip():
            self._text = ""
            self._set_status(SpeechStatus.IDLE)
            return
        self._text = text
        self._set_status(SpeechStatus.SPEAKING)
        self._start(text, base=0)

    def update_settings(self, rate: Optional[float] = None, voice: Optional[VoiceRef] = None) -> bool:
        """Apply new rate/voice to the rest of the current text.

        Returns False (and changes nothing) unless speech is in progress.
        """
        if self._status != SpeechStatus.SPEAKING:
            return False
        if rate is not None:
            self._rate = rate
        if voice is not None:
            self._voice = voice
        remaining = self._text[self._cursor:]
        if not remaining.strip():
            self._cancel_engine()
            self._reset()
            self.stopped.emit(StopEvent(StopReason.EXHAUSTED))
            return True
        logger.debug("Restarting speech at {} with rate {}", self._cursor, self._rate)
        self._cancel_engine()
        self._start(remaining, base=self._cursor)
        return True

    def stop(self) -> None:
        if self._status == SpeechStatus.SPEAKING:
            self._set_status(SpeechStatus.INTERRUPTED)
        self._cancel_engine()
        self._reset()
        self.stopped.emit(StopEvent(StopReason.STOPPED))

    def _start(self, text: str, base: int) -> None:
        self._generation += 1
        generation = self._generation
        self._base = base
        callbacks = UtteranceCallbacks(
            on_boundary=lambda offset: self._on_boundary(generation, offset),
            on_end=lambda: self._on_end(generation),
            on_error=lambda error: self._on_error(generation, error),
        )
        try:
            self._engine.speak(text, self._rate, self._voice, callbacks)
        except SpeechEngineError as exc:
            self._on_error(generation, str(exc))

    def _cancel_engine(self) -> None:
        self._generation += 1
        self._engine.cancel()

    def _on_boundary(self, generation: int, offset: int) -> None:
        if generation != self._generation:
            return
        absolute = min(self._base + max(0, offset), len(self._text))
        if absolute <= self._cursor:
            return
        self._cursor = absolute
        self.boundary.emit(absolute)

    def _on_end(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._set_status(SpeechStatus.ENDED)
        self._reset()
        self.stopped.emit(StopEvent(StopReason.ENDED))

    def _on_error(self, generation: int, error: str) -> None:
        if generation != self._generation or error == "interrupted":
            return
        logger.error("Speech engine error: {}", error)
        self._set_status(SpeechStatus.ERRORED)
        self._reset()
        self.stopped.emit(StopEvent(StopReason.ERROR, error))

    def _reset(self) -> None:
        self._generation += 1
        self._text = ""
        self._cursor = 0
        self._base = 0
        self._set_status(SpeechStatus.IDLE)

    def _set_status(self, status: SpeechStatus) -> None:
        if status != self._status:
            self._status = status
            self.state_changed.emit(status.value)
