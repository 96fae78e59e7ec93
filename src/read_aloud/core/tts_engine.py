"""QtTextToSpeech adapter for SpeechSession."""

from __future__ import annotations

import math
from typing import List, Optional

from loguru import logger
from PySide6.QtCore import QObject
from PySide6.QtTextToSpeech import QTextToSpeech, QVoice

from .errors import SpeechEngineError
from .speech import UtteranceCallbacks
from .types import VoiceRef


def qt_rate(rate: float) -> float:
    """Map a playback multiplier (0.5 to 2.0) onto Qt's -1..1 rate scale."""
    if rate <= 0:
        return -1.0
    return max(-1.0, min(1.0, math.log2(rate)))


class QtSpeechEngine(QObject):
    """Drive QTextToSpeech, one utterance at a time."""

    def __init__(self, engine_name: Optional[str] = None, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._tts = QTextToSpeech(engine_name, self) if engine_name else QTextToSpeech(self)
        self._callbacks: Optional[UtteranceCallbacks] = None
        self._started = False
        self._tts.stateChanged.connect(self._on_state)
        self._tts.sayingWord.connect(self._on_word)
        self._tts.errorOccurred.connect(self._on_error)

    def voices(self) -> List[VoiceRef]:
        return [VoiceRef(name=v.name(), lang=v.locale().bcp47Name()) for v in self._tts.availableVoices()]

    def speak(self, text: str, rate: float, voice: Optional[VoiceRef], callbacks: UtteranceCallbacks) -> None:
        if self._tts.state() == QTextToSpeech.State.Error:
            raise SpeechEngineError(self._tts.errorString() or "speech engine unavailable")
        self._tts.setRate(qt_rate(rate))
        if voice is not None:
            match = self._find_voice(voice)
            if match is not None:
                self._tts.setVoice(match)
            else:
                logger.warning("Voice {} ({}) not available, keeping {}", voice.name, voice.lang, self._tts.voice().name())
        self._callbacks = callbacks
        self._started = False
        self._tts.say(text)

    def cancel(self) -> None:
        callbacks, self._callbacks = self._callbacks, None
        self._tts.stop()
        if callbacks is not None:
            callbacks.on_error("interrupted")

    def _find_voice(self, ref: VoiceRef) -> Optional[QVoice]:
        candidates = self._tts.availableVoices()
        for v in candidates:
            if v.name() == ref.name and v.locale().bcp47Name() == ref.lang:
                return v
        for v in candidates:
            if v.name() == ref.name:
                return v
        return None

    def _on_state(self, state: QTextToSpeech.State) -> None:
        if state == QTextToSpeech.State.Speaking:
            self._started = True
        elif state == QTextToSpeech.State.Ready and self._started and self._callbacks is not None:
            callbacks, self._callbacks = self._callbacks, None
            self._started = False
            callbacks.on_end()

    def _on_word(self, _word: str, _id: int, start: int, _length: int) -> None:
        if self._callbacks is not None:
            self._callbacks.on_boundary(start)

    def _on_error(self, _reason, message: str) -> None:
        callbacks, self._callbacks = self._callbacks, None
        if callbacks is not None:
            callbacks.on_error(message or "speech engine error")
