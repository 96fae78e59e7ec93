"""Tests for the command line entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from read_aloud.app import build_parser, main, reader_command
from read_aloud.config.manager import ConfigManager
from read_aloud.core.coordinator import Surface
from read_aloud.core.messages import ReadComic, ReadPdf, StartReading, dispatch

from test_coordinator import DummyEngine, DummySink, make


def parse(*argv: str):
    return build_parser().parse_args(list(argv))


def test_reader_commands_map_to_messages() -> None:
    assert reader_command(parse("speak", "Hello there")) == (Surface.PAGE, StartReading(tab=0, text="Hello there"))
    assert reader_command(parse("pdf", "book.pdf")) == (Surface.PDF, ReadPdf(tab=0, ref="book.pdf"))
    surface, command = reader_command(parse("comic", "a.png", "b.png", "--chapter-url", "https://x/ch-2"))
    assert surface == Surface.COMIC
    assert command == ReadComic(tab=0, panels=("a.png", "b.png"), chapter_url="https://x/ch-2")


def test_non_reader_command_is_rejected() -> None:
    with pytest.raises(ValueError):
        reader_command(parse("health"))


def test_reader_command_drives_coordinator(qapp) -> None:
    engine = DummyEngine()
    coordinator, _, _ = make(qapp, engine, DummySink())
    _, command = reader_command(parse("pdf", "doc.pdf"))

    reply = asyncio.run(dispatch(coordinator, command))

    assert reply.ok is True
    assert engine.texts == ["Page one"]


def test_mode_command_persists_choice(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.setattr("read_aloud.app.setup_logging", lambda *args, **kwargs: None)
    config_path = tmp_path / "config.json"

    assert main(["--config", str(config_path), "mode", "hybrid"]) == 0

    assert capsys.readouterr().out.strip() == "hybrid"
    assert ConfigManager(config_path=config_path).recognizer_mode == "hybrid"
