"""Shared data model for detection, recognition and caching."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class BoundingBox(BaseModel):
    """Axis-aligned region in original-image pixel coordinates."""

    min_x: float = Field(ge=0)
    min_y: float = Field(ge=0)
    max_x: float = Field(ge=0)
    max_y: float = Field(ge=0)
    score: float = 1.0

    @model_validator(mode="after")
    def _ordered(self) -> "BoundingBox":
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"inverted box: {self!r}")
        return self

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def area(self) -> float:
        return self.width * self.height

    @classmethod
    def clamped(
        cls,
        x1: float,
        y1: float,
        x2: float,
        y2: float,
        width: float,
        height: float,
        score: float = 1.0,
    ) -> "BoundingBox":
        """Build a box from possibly out-of-range corners, clamped to the image."""
        x1, x2 = sorted((max(0.0, min(width, x1)), max(0.0, min(width, x2))))
        y1, y2 = sorted((max(0.0, min(height, y1)), max(0.0, min(height, y2))))
        return cls(min_x=x1, min_y=y1, max_x=x2, max_y=y2, score=score)

    def offset(self, dx: float = 0.0, dy: float = 0.0) -> "BoundingBox":
        return self.model_copy(
            update={
                "min_x": self.min_x + dx,
                "max_x": self.max_x + dx,
                "min_y": self.min_y + dy,
                "max_y": self.max_y + dy,
            }
        )

    def pixel_rect(self) -> tuple[int, int, int, int]:
        """Inclusive integer rectangle as ``(x, y, w, h)`` with ``w, h >= 1``."""
        x = max(0, int(math.floor(self.min_x)))
        y = max(0, int(math.floor(self.min_y)))
        w = max(1, int(round(self.max_x - self.min_x)) + 1)
        h = max(1, int(round(self.max_y - self.min_y)) + 1)
        return x, y, w, h


@dataclass(frozen=True)
class RecognizedLine:
    """Decoded text of a single region."""

    text: str
    confidence: float
    backend: str = ""


class OcrResult(BaseModel):
    """Recognized lines (in box-detection order) and the detected boxes."""

    lines: List[str] = Field(default_factory=list)
    boxes: List[BoundingBox] = Field(default_factory=list)
    # index into ``boxes`` for each line, -1 for whole-image fallback text
    line_boxes: List[int] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(self.lines)

    def is_empty(self) -> bool:
        return not self.lines


class CacheEntry(BaseModel):
    """A cached OCR result keyed by content hash."""

    hash: str
    timestamp: float = Field(default_factory=time.time)
    version: str
    lines: List[str]
    boxes: List[BoundingBox] = Field(default_factory=list)
    line_boxes: List[int] = Field(default_factory=list)

    def to_result(self) -> OcrResult:
        return OcrResult(lines=list(self.lines), boxes=list(self.boxes), line_boxes=list(self.line_boxes))


@dataclass(frozen=True)
class VoiceRef:
    """Identifies a synthesis voice."""

    name: str
    lang: str

    @classmethod
    def from_config(cls, voice: Optional[object]) -> Optional["VoiceRef"]:
        if voice is None:
            return None
        return cls(name=getattr(voice, "name"), lang=getattr(voice, "lang"))
