"""Exception hierarchy shared by the OCR and speech layers."""

from __future__ import annotations

import asyncio


class ReadAloudError(Exception):
    """Base class for all errors raised by read-aloud."""


class ImageFetchError(ReadAloudError):
    """An image could not be fetched or decoded (pipeline input failure)."""


class PdfLoadError(ReadAloudError):
    """A PDF document could not be opened or parsed."""


class ModelLoadError(ReadAloudError):
    """A model session or dictionary could not be created."""


class DetectionError(ReadAloudError):
    """The region detector failed to run."""


class RecognitionError(ReadAloudError):
    """A recognizer failed for a single region."""


class WorkerError(ReadAloudError):
    """The OCR worker process rejected a job or died."""


class WorkerTimeoutError(WorkerError, asyncio.TimeoutError):
    """A worker round trip exceeded its time budget."""


class SpeechEngineError(ReadAloudError):
    """The speech engine is unavailable or misconfigured."""
