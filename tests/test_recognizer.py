"""Tests for CTC decoding and the sequence-model recognizer."""

from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import List

import numpy as np
import pytest

from read_aloud.config.schemas import RecognitionConfig
from read_aloud.core.errors import RecognitionError
from read_aloud.core.imaging import RasterImage
from read_aloud.core.recognizer import CtcRecognizer, ctc_greedy_decode, load_dictionary
from read_aloud.core.types import BoundingBox

DICT = ["a", "b", "c"]


def logits(classes: List[int], num_classes: int = 4, margin: float = 10.0) -> np.ndarray:
    out = np.zeros((len(classes), num_classes), dtype=np.float32)
    for t, c in enumerate(classes):
        out[t, c] = margin
    return out


def test_greedy_decode_collapses_repeats_and_blanks() -> None:
    line = ctc_greedy_decode(logits([1, 1, 0, 1, 2]), DICT)

    assert line.text == "aab"
    assert line.confidence == pytest.approx(1 / (1 + math.exp(-10)))
    assert line.backend == "ppocr"


def test_out_of_dictionary_class_emits_nothing_but_breaks_repeats() -> None:
    line = ctc_greedy_decode(logits([1, 5, 1], num_classes=6), DICT)

    assert line.text == "aa"


def test_batched_layout_is_accepted_and_decoding_is_deterministic() -> None:
    scores = np.random.default_rng(3).normal(size=(1, 12, 4)).astype(np.float32)

    first = ctc_greedy_decode(scores, DICT)
    second = ctc_greedy_decode(scores.copy(), DICT)

    assert first == second
    assert first == ctc_greedy_decode(scores[0], DICT)


def test_all_blank_output_has_zero_confidence() -> None:
    line = ctc_greedy_decode(logits([0, 0, 0]), DICT)

    assert line.text == ""
    assert line.confidence == 0.0


def test_unexpected_shape_raises() -> None:
    with pytest.raises(RecognitionError):
        ctc_greedy_decode(np.zeros((2, 3, 4), dtype=np.float32), DICT)


def test_load_dictionary_drops_blank_lines(tmp_path: Path) -> None:
    path = tmp_path / "dict.txt"
    path.write_text("a\n\nb\nc\n", encoding="utf-8")

    assert load_dictionary(path) == ["a", "b", "c", " "]
    assert load_dictionary(path, use_space_char=False) == ["a", "b", "c"]


class DummyRuntime:
    def __init__(self, outputs: List[np.ndarray]) -> None:
        self.outputs = outputs
        self.shapes = []

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.shapes.append(tensor.shape)
        return self.outputs.pop(0)


def make_recognizer(runtime: DummyRuntime, **overrides) -> CtcRecognizer:
    async def model():
        return runtime

    async def dictionary():
        return DICT

    return CtcRecognizer(model, dictionary, RecognitionConfig(**overrides))


def image(height: int, width: int) -> RasterImage:
    return RasterImage.from_array(np.full((height, width, 3), 200, dtype=np.uint8))


def test_wide_box_runs_once_with_fixed_input() -> None:
    runtime = DummyRuntime([logits([2, 3])])
    recognizer = make_recognizer(runtime)

    line = asyncio.run(recognizer.recognize_box(image(50, 200), BoundingBox(min_x=0, min_y=0, max_x=99, max_y=19)))

    assert line.text == "bc"
    assert runtime.shapes == [(1, 3, 48, 320)]


def test_vertical_box_keeps_more_confident_rotation() -> None:
    runtime = DummyRuntime([logits([1], margin=0.1), logits([2, 3], margin=8.0)])
    recognizer = make_recognizer(runtime)

    line = asyncio.run(recognizer.recognize_box(image(200, 50), BoundingBox(min_x=0, min_y=0, max_x=19, max_y=99)))

    assert len(runtime.shapes) == 2
    assert line.text == "bc"


def test_vertical_box_keeps_upright_when_rotation_is_worse() -> None:
    runtime = DummyRuntime([logits([1, 2], margin=9.0), logits([3], margin=0.5)])
    recognizer = make_recognizer(runtime)

    line = asyncio.run(recognizer.recognize_box(image(200, 50), BoundingBox(min_x=0, min_y=0, max_x=19, max_y=99)))

    assert line.text == "ab"


def test_rotation_can_be_disabled() -> None:
    runtime = DummyRuntime([logits([1])])
    recognizer = make_recognizer(runtime, try_rotate=False)

    asyncio.run(recognizer.recognize_box(image(200, 50), BoundingBox(min_x=0, min_y=0, max_x=19, max_y=99)))

    assert len(runtime.shapes) == 1
