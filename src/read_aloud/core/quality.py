"""Text-quality heuristic used to pick between recognizer backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ..config.schemas import QualityConfig, RecognitionConfig
from .types import RecognizedLine


@dataclass(frozen=True)
class QualityScore:
    letters: int
    digits: int
    symbols: int
    alpha_ratio: float
    low_quality: bool

    def rank(self) -> Tuple[bool, int, float]:
        """Sort key: acceptable first, then more letters, then higher ratio."""
        return (not self.low_quality, self.letters, self.alpha_ratio)

    def better_than(self, other: "QualityScore") -> bool:
        return self.rank() > other.rank()


def score_text(lines: Iterable[str], config: Optional[QualityConfig] = None) -> QualityScore:
    cfg = config or QualityConfig()
    lines = list(lines)
    letters = digits = symbols = 0
    for ch in " ".join(lines):
        if ch.isspace():
            continue
        if ch.isalpha():
            letters += 1
        elif ch.isdigit():
            digits += 1
        else:
            symbols += 1
    counted = letters + digits + symbols
    alpha_ratio = letters / counted if counted else 0.0
    low = not lines or alpha_ratio < cfg.min_alpha_ratio or letters < cfg.min_letters
    return QualityScore(letters, digits, symbols, alpha_ratio, low)


def accept_line(line: RecognizedLine, config: Optional[RecognitionConfig] = None) -> bool:
    cfg = config or RecognitionConfig()
    return len(line.text.strip()) >= cfg.min_line_len and line.confidence >= cfg.min_confidence
