"""Tests for the Qt speech engine rate mapping."""

from __future__ import annotations

import pytest

from read_aloud.core.tts_engine import qt_rate


@pytest.mark.parametrize("rate,expected", [(1.0, 0.0), (2.0, 1.0), (0.5, -1.0), (4.0, 1.0), (0.0, -1.0)])
def test_qt_rate(rate: float, expected: float) -> None:
    assert qt_rate(rate) == pytest.approx(expected)
