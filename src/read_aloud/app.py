"""Command line entry point for read-aloud."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

from .config.manager import ConfigManager
from .core.coordinator import ReadingCoordinator, Surface
from .core.errors import ReadAloudError
from .core.messages import Command, ReadComic, ReadPdf, StartReading, UpdateSpeechSettings, dispatch
from .core.pipeline import OcrPipeline, create_pipeline
from .core.runtime import RuntimeContext
from .core.sources import LogHighlightSink, PdfTextSource
from .core.speech import SpeechSession
from .core.types import VoiceRef
from .infra.logging import setup_logging

try:
    from PySide6 import QtCore
except ImportError:  # pragma: no cover
    QtCore = None  # type: ignore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="read-aloud", description="Read text, PDFs and comics aloud.")
    parser.add_argument("--config", type=Path, help="configuration file (default ~/.read_aloud/config.json)")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", type=Path)
    sub = parser.add_subparsers(dest="command", required=True)

    speak = sub.add_parser("speak", help="speak a text")
    speak.add_argument("text")
    _add_voice_args(speak)

    ocr = sub.add_parser("ocr", help="recognize images and print the result as JSON")
    ocr.add_argument("refs", nargs="+", metavar="REF")

    comic = sub.add_parser("comic", help="read comic panels in order")
    comic.add_argument("refs", nargs="+", metavar="REF")
    comic.add_argument("--chapter-url")
    _add_voice_args(comic)

    pdf = sub.add_parser("pdf", help="read a PDF page by page")
    pdf.add_argument("ref")
    _add_voice_args(pdf)

    health = sub.add_parser("health", help="report model and worker status")
    health.add_argument("--warmup", action="store_true", help="load models before reporting")

    mode = sub.add_parser("mode", help="show or set the recognizer mode")
    mode.add_argument("mode", nargs="?", choices=["ppocr", "tesseract", "hybrid"])
    return parser


def _add_voice_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--rate", type=float)
    parser.add_argument("--voice", help="voice name")
    parser.add_argument("--lang", default="", help="voice language tag")


async def pump_qt(app: "QtCore.QCoreApplication", interval: float = 0.01) -> None:
    """Process Qt events from the asyncio loop so speech signals get delivered."""
    while True:
        app.processEvents()
        await asyncio.sleep(interval)


async def _until_quiet(coordinator: ReadingCoordinator, session: SpeechSession, surface: Surface) -> None:
    while True:
        await coordinator.wait_idle()
        position = coordinator.position(surface)
        if not session.speaking and (position is None or not position.playing):
            return
        await asyncio.sleep(0.1)


def reader_command(args: argparse.Namespace) -> Tuple[Surface, Command]:
    """The coordinator command a reader subcommand maps to, with its surface."""
    if args.command == "speak":
        return Surface.PAGE, StartReading(tab=0, text=args.text)
    if args.command == "pdf":
        return Surface.PDF, ReadPdf(tab=0, ref=args.ref)
    if args.command == "comic":
        return Surface.COMIC, ReadComic(tab=0, panels=tuple(args.refs), chapter_url=args.chapter_url)
    raise ValueError(f"{args.command} is not a reading command")


async def _run_reader(args: argparse.Namespace, manager: ConfigManager, context: RuntimeContext) -> int:
    from .core.tts_engine import QtSpeechEngine

    if QtCore is None:
        raise RuntimeError("PySide6 is not installed. Please install project dependencies.")
    app = QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
    pump = asyncio.create_task(pump_qt(app))

    config = manager.config
    session = SpeechSession(QtSpeechEngine())
    pipeline = create_pipeline(manager, context)
    coordinator = ReadingCoordinator(
        session, pipeline, LogHighlightSink(), PdfTextSource(config.timeouts), config.speech
    )
    failures = []
    coordinator.operation_failed.connect(lambda surface, message: failures.append(message))
    coordinator.navigate_requested.connect(lambda _tab, url: print(f"next chapter: {url}"))

    surface, command = reader_command(args)
    try:
        voice = VoiceRef(name=args.voice, lang=args.lang) if args.voice else None
        if args.rate is not None or voice is not None:
            await dispatch(coordinator, UpdateSpeechSettings(rate=args.rate, voice=voice))
        reply = await dispatch(coordinator, command)
        if reply.ok:
            await _until_quiet(coordinator, session, surface)
    finally:
        session.stop()
        pump.cancel()
    for message in failures:
        logger.error(message)
    if not reply.ok and not failures:
        logger.error("Nothing to read for {}", args.command)
    return 0 if reply.ok and not failures else 1


async def _run_ocr(args: argparse.Namespace, manager: ConfigManager, context: RuntimeContext) -> int:
    pipeline = create_pipeline(manager, context)
    status = 0
    for ref in args.refs:
        try:
            result = await pipeline.recognize_source(ref)
        except ReadAloudError as exc:
            logger.error("{}: {}", ref, exc)
            status = 1
            continue
        print(json.dumps({"ref": ref, **result.model_dump()}, ensure_ascii=False))
    return status


async def _run_health(args: argparse.Namespace, manager: ConfigManager, context: RuntimeContext) -> int:
    pipeline: OcrPipeline = create_pipeline(manager, context)
    report = {}
    if args.warmup:
        report["warmup"] = await pipeline.warmup()
    report.update(pipeline.health())
    print(json.dumps(report, indent=2, default=str))
    return 0 if report.get("warmup", {}).get("ok", True) else 1


async def _run(args: argparse.Namespace, manager: ConfigManager) -> int:
    context = RuntimeContext()
    try:
        if args.command == "ocr":
            return await _run_ocr(args, manager, context)
        if args.command == "health":
            return await _run_health(args, manager, context)
        return await _run_reader(args, manager, context)
    finally:
        await context.aclose()


def main(argv: Optional[list[str]] = None) -> int:
    """Run the read-aloud command line.

    Args:
        argv: Command line arguments without the program name.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, log_file=args.log_file)
    manager = ConfigManager(config_path=args.config) if args.config else ConfigManager()

    if args.command == "mode":
        if args.mode:
            manager.set_recognizer_mode(args.mode)
            logger.info("Recognizer mode set to {}", args.mode)
        print(manager.recognizer_mode)
        return 0

    return asyncio.run(_run(args, manager))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
