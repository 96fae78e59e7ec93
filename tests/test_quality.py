"""Tests for the text quality heuristic and line filter."""

from __future__ import annotations

import pytest

from read_aloud.config.schemas import QualityConfig
from read_aloud.core.quality import accept_line, score_text
from read_aloud.core.types import RecognizedLine


def test_counts_ignore_whitespace() -> None:
    score = score_text(["Hi there", "42!"])

    assert (score.letters, score.digits, score.symbols) == (7, 2, 1)
    assert score.alpha_ratio == pytest.approx(0.7)
    assert score.low_quality is False


def test_no_lines_is_low_quality() -> None:
    score = score_text([])

    assert score.low_quality is True
    assert score.alpha_ratio == 0.0


def test_symbol_noise_is_low_quality() -> None:
    assert score_text(["a|b|c|d|e|{}[]"]).low_quality is True


def test_too_few_letters_is_low_quality() -> None:
    assert score_text(["Ok"]).low_quality is True
    assert score_text(["Okay!"]).low_quality is True
    assert score_text(["Hello"]).low_quality is False


def test_thresholds_are_configurable() -> None:
    strict = QualityConfig(min_alpha_ratio=0.9, min_letters=1)

    assert score_text(["abc12"], strict).low_quality is True
    assert score_text(["abc"], strict).low_quality is False


def test_ranking_prefers_acceptable_then_letters() -> None:
    good = score_text(["Where are we going"])
    short = score_text(["Hello"])
    bad = score_text(["#$%^&*"])

    assert good.better_than(short)
    assert short.better_than(bad)
    assert not bad.better_than(good)


@pytest.mark.parametrize(
    "text,confidence,accepted",
    [
        ("Hi", 0.9, True),
        (" H ", 0.9, False),
        ("Hello", 0.34, False),
        ("Hello", 0.35, True),
    ],
)
def test_accept_line(text: str, confidence: float, accepted: bool) -> None:
    assert accept_line(RecognizedLine(text, confidence)) is accepted


def test_digits_only_is_low_quality() -> None:
    score = score_text(["12345"])

    assert score.letters == 0
    assert score.low_quality is True


def test_plain_sentence_is_acceptable() -> None:
    score = score_text(["The quick fox"])

    assert score.letters == 11
    assert score.alpha_ratio == pytest.approx(1.0)
    assert score.low_quality is False
