"""Tests for message dispatch to the reading coordinator."""

from __future__ import annotations

import asyncio
from dataclasses import FrozenInstanceError

import pytest

from read_aloud.core.coordinator import Surface
from read_aloud.core.messages import (
    Ack,
    GetUiState,
    NextItem,
    PanelText,
    PrefetchPanel,
    ReadComic,
    ReadPage,
    ReadPdf,
    RecognizePanel,
    StartReading,
    StopReading,
    StopSurface,
    TabClosed,
    TogglePlayPause,
    UiState,
    UpdateSpeechSettings,
    dispatch,
)

from test_coordinator import PANELS, DummyEngine, DummyPdf, DummyPipeline, DummySink, make


@pytest.fixture
def setup(qapp):
    engine = DummyEngine()
    coordinator, session, failures = make(qapp, engine, DummySink(), pipeline=DummyPipeline(PANELS))
    return coordinator, engine, session


def send(coordinator, message):
    return asyncio.run(dispatch(coordinator, message))


def test_start_update_and_stop_reading(setup) -> None:
    coordinator, engine, session = setup

    assert send(coordinator, StartReading(1, "hello world")) == Ack(True)
    engine.current.on_boundary(6)
    assert send(coordinator, UpdateSpeechSettings(rate=1.5)) == Ack(True)
    assert send(coordinator, StopReading()) == Ack()

    assert engine.utterances[-1][:2] == ("world", 1.5)
    assert not session.speaking


def test_settings_update_when_idle_is_not_applied(setup) -> None:
    coordinator, _, _ = setup

    assert send(coordinator, UpdateSpeechSettings(rate=0.75)) == Ack(False)
    assert coordinator.rate == 0.75


def test_read_page_and_ui_state(setup) -> None:
    coordinator, _, _ = setup

    assert send(coordinator, ReadPage(7, "page body")) == Ack(True)
    state = send(coordinator, GetUiState())

    assert isinstance(state, UiState)
    assert state.speaking is True
    assert state.active_tab == 7
    assert state.surfaces["page"]["playing"] is True


def test_pdf_navigation_commands(setup) -> None:
    coordinator, engine, _ = setup

    async def scenario():
        assert await dispatch(coordinator, ReadPdf(1, "doc.pdf")) == Ack(True)
        assert await dispatch(coordinator, NextItem(Surface.PDF)) == Ack(True)
        assert await dispatch(coordinator, TogglePlayPause(Surface.PDF)) == Ack(True)
        assert await dispatch(coordinator, StopSurface(Surface.PDF)) == Ack(True)
        assert await dispatch(coordinator, StopSurface(Surface.PDF)) == Ack(False)

    asyncio.run(scenario())

    assert engine.texts == ["Page one", "Page two"]


def test_panel_commands(setup) -> None:
    coordinator, _, _ = setup

    reply = send(coordinator, RecognizePanel("p1"))

    assert reply == PanelText(PANELS["p1"].lines, PANELS["p1"].boxes, PANELS["p1"].line_boxes)
    assert send(coordinator, PrefetchPanel("p2")) == Ack(True)


def test_read_comic_and_tab_closed(setup) -> None:
    coordinator, _, session = setup

    async def scenario():
        assert await dispatch(coordinator, ReadComic(3, ("p1", "p2"))) == Ack(True)
        await coordinator.wait_idle()
        assert await dispatch(coordinator, TabClosed(3)) == Ack()

    asyncio.run(scenario())

    assert not session.speaking
    assert coordinator.position(Surface.COMIC) is None


def test_failed_pdf_is_not_acknowledged(qapp) -> None:
    coordinator, _, _ = make(qapp, DummyEngine(), DummySink(), pdf=DummyPdf(None))

    assert send(coordinator, ReadPdf(1, "broken.pdf")) == Ack(False)


def test_messages_are_immutable() -> None:
    message = StartReading(1, "text")

    with pytest.raises(FrozenInstanceError):
        message.text = "other"  # type: ignore[misc]


def test_unknown_message_type_is_rejected(setup) -> None:
    coordinator, _, _ = setup

    with pytest.raises(TypeError):
        send(coordinator, object())
