"""Tests for SpeechSession state handling with a scripted engine."""

from __future__ import annotations

from typing import List, Optional

import pytest

from read_aloud.core.errors import SpeechEngineError
from read_aloud.core.speech import (
    SpeechSession,
    SpeechStatus,
    StopEvent,
    StopReason,
    UtteranceCallbacks,
)
from read_aloud.core.types import VoiceRef


class DummyEngine:
    """Records utterances; tests fire callbacks by hand."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.utterances: List[tuple] = []
        self.cancels = 0

    def speak(self, text: str, rate: float, voice: Optional[VoiceRef], callbacks: UtteranceCallbacks) -> None:
        if self.fail:
            raise SpeechEngineError("no voices installed")
        self.utterances.append((text, rate, voice, callbacks))

    def cancel(self) -> None:
        self.cancels += 1
        if self.utterances:
            # a real engine reports cancellation as an "interrupted" error
            self.utterances[-1][3].on_error("interrupted")

    def voices(self) -> List[VoiceRef]:
        return [VoiceRef("Alice", "en-US")]

    @property
    def current(self) -> UtteranceCallbacks:
        return self.utterances[-1][3]


@pytest.fixture
def engine() -> DummyEngine:
    return DummyEngine()


@pytest.fixture
def session(qapp, engine: DummyEngine) -> SpeechSession:
    return SpeechSession(engine)


@pytest.fixture
def events(session: SpeechSession):
    received = {"boundary": [], "stopped": []}
    session.boundary.connect(received["boundary"].append)
    session.stopped.connect(received["stopped"].append)
    return received


def test_speak_starts_utterance(session: SpeechSession, engine: DummyEngine) -> None:
    session.speak("hello world", rate=1.25, voice=VoiceRef("Alice", "en-US"))

    assert session.status == SpeechStatus.SPEAKING
    assert engine.utterances[0][:3] == ("hello world", 1.25, VoiceRef("Alice", "en-US"))
    assert session.cursor == 0


def test_empty_text_goes_idle_without_engine_call(session: SpeechSession, engine: DummyEngine) -> None:
    session.speak("   ")

    assert session.status == SpeechStatus.IDLE
    assert engine.utterances == []


def test_boundaries_only_move_forward(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("one two three")
    cb = engine.current

    cb.on_boundary(4)
    cb.on_boundary(2)
    cb.on_boundary(4)
    cb.on_boundary(8)
    cb.on_boundary(500)

    assert events["boundary"] == [4, 8, 13]
    assert session.cursor == 13


def test_resume_after_settings_change(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("hello world again")
    engine.current.on_boundary(6)

    assert session.update_settings(rate=1.5) is True

    text, rate, _voice, cb = engine.utterances[-1]
    assert text == "world again"
    assert rate == 1.5
    cb.on_boundary(5)
    assert events["boundary"] == [6, 11]
    assert session.cursor == 11
    assert events["stopped"] == []


def test_superseded_utterance_callbacks_are_ignored(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("first text here")
    old = engine.current
    session.speak("second text")

    old.on_boundary(6)
    old.on_end()

    assert events["boundary"] == []
    assert events["stopped"] == []
    assert session.text == "second text"


def test_update_settings_when_idle_is_ignored(session: SpeechSession, engine: DummyEngine) -> None:
    assert session.update_settings(rate=2.0) is False
    assert engine.utterances == []


def test_update_settings_with_nothing_left_stops(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("done")
    engine.current.on_boundary(4)

    assert session.update_settings(rate=0.8) is True

    assert session.status == SpeechStatus.IDLE
    assert events["stopped"] == [StopEvent(StopReason.EXHAUSTED)]


def test_stop_when_idle_still_notifies(session: SpeechSession, events) -> None:
    session.stop()
    session.stop()

    assert session.status == SpeechStatus.IDLE
    assert events["stopped"] == [StopEvent(StopReason.STOPPED), StopEvent(StopReason.STOPPED)]


def test_stop_cancels_and_resets(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("some words")
    engine.current.on_boundary(5)

    session.stop()

    assert engine.cancels == 1
    assert (session.text, session.cursor) == ("", 0)
    assert events["stopped"] == [StopEvent(StopReason.STOPPED)]


def test_end_notifies_and_clears(session: SpeechSession, engine: DummyEngine, events) -> None:
    states = []
    session.state_changed.connect(states.append)
    session.speak("short")

    engine.current.on_end()

    assert events["stopped"] == [StopEvent(StopReason.ENDED)]
    assert session.text == ""
    assert states == ["speaking", "ended", "idle"]


def test_interrupted_error_is_swallowed(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("short")

    engine.current.on_error("interrupted")

    assert session.status == SpeechStatus.SPEAKING
    assert events["stopped"] == []


def test_engine_error_stops_with_reason(session: SpeechSession, engine: DummyEngine, events) -> None:
    session.speak("short")

    engine.current.on_error("synthesis-failed")

    assert session.status == SpeechStatus.IDLE
    assert events["stopped"] == [StopEvent(StopReason.ERROR, "synthesis-failed")]


def test_engine_refusing_to_speak_reports_error(qapp) -> None:
    session = SpeechSession(DummyEngine(fail=True))
    stopped = []
    session.stopped.connect(stopped.append)

    session.speak("hello")

    assert session.status == SpeechStatus.IDLE
    assert stopped[0].reason == StopReason.ERROR
