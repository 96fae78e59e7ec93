"""Logging utilities for read-aloud."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    bridge_stdlib: bool = True,
) -> None:
    """Configure application-wide logging.

    Args:
        level: Minimum level for the console sink (and stdlib logging).
        log_file: Optional rotating file sink next to the console output.
        bridge_stdlib: Route stdlib ``logging`` records (onnxruntime, PIL,
            urllib3...) into loguru so everything lands in the same sinks.
    """
    level_name = logging.getLevelName(level) if isinstance(level, int) else level.upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level_name,
        format="<green>{time:HH:mm:ss}</green> [<level>{level}</level>] {name}: {message}",
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level="DEBUG", rotation="5 MB", retention=3)

    logging.basicConfig(level=level_name, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if bridge_stdlib:
        _bridge_standard_logging()


def _bridge_standard_logging() -> None:
    """Redirect stdlib logging messages to loguru."""
    class LoguruHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno
            logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())

    logging.getLogger().handlers.clear()
    logging.getLogger().addHandler(LoguruHandler())
