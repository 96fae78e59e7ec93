"""Pydantic schemas for application configuration."""

from __future__ import annotations

from typing import Literal, Optional, Tuple

from pydantic import BaseModel, Field

RecognizerMode = Literal["ppocr", "tesseract", "hybrid"]


class ModelPaths(BaseModel):
    """Locations of detector/recognizer weights and the recognition dictionary."""

    base_dir: Optional[str] = None
    bubble_detector: str = "models/bubble_detector.onnx"
    text_detector: str = "models/ppocr/det/en_ppocrv3_det.onnx"
    recognizer: str = "models/ppocr/rec/en_ppocrv3_rec.onnx"
    dictionary: str = "models/ppocr/rec/en_dict.txt"


class DetectorConfig(BaseModel):
    """Bubble/text region detection parameters."""

    kind: Literal["bubble", "text"] = "bubble"
    input_size: int = Field(640, ge=32)
    window_overlap: float = Field(0.25, ge=0.0, lt=1.0)
    score_threshold: float = Field(0.25, ge=0.0, le=1.0)
    iou_threshold: float = Field(0.45, ge=0.0, le=1.0)
    mean: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    std: Tuple[float, float, float] = (255.0, 255.0, 255.0)
    # probability-mask detector only
    mask_threshold: float = Field(0.35, ge=0.0, le=1.0)
    min_component_area: int = Field(40, ge=1)
    merge_iou: float = Field(0.2, ge=0.0, le=1.0)


class RecognitionConfig(BaseModel):
    """Recognizer backends and line acceptance thresholds."""

    mode: RecognizerMode = "ppocr"
    image_height: int = Field(48, ge=8)
    max_width: int = Field(320, ge=8)
    min_line_len: int = Field(2, ge=1)
    min_confidence: float = Field(0.35, ge=0.0, le=1.0)
    try_rotate: bool = True
    vertical_ratio: float = Field(1.2, gt=0.0)
    use_space_char: bool = True
    fallback_to_tesseract: bool = False
    parallel_boxes: bool = True
    tesseract_lang: str = "eng"
    tesseract_psm: int = Field(6, ge=0, le=13)
    tesseract_oem: int = Field(1, ge=0, le=3)
    preprocess_full_image: bool = True


class QualityConfig(BaseModel):
    """Thresholds of the text quality heuristic."""

    min_alpha_ratio: float = Field(0.5, ge=0.0, le=1.0)
    min_letters: int = Field(5, ge=0)


class CacheConfig(BaseModel):
    """Persistent OCR result cache."""

    enabled: bool = True
    path: Optional[str] = None
    max_entries: int = Field(2000, ge=1)


class TimeoutConfig(BaseModel):
    """Budgets (seconds) for cross-process and network round trips."""

    worker_start: float = Field(15.0, gt=0)
    worker_job: float = Field(60.0, gt=0)
    preprocess: float = Field(30.0, gt=0)
    detection: float = Field(90.0, gt=0)
    image_fetch: float = Field(15.0, gt=0)


class VoiceConfig(BaseModel):
    """Identifies a synthesis voice by name and language tag."""

    name: str
    lang: str


class SpeechConfig(BaseModel):
    """Playback defaults."""

    rate: float = Field(1.0, ge=0.5, le=2.0)
    voice: Optional[VoiceConfig] = None
    continuous: bool = True


class AppConfig(BaseModel):
    """Root configuration model for the application."""

    models: ModelPaths = ModelPaths()
    detector: DetectorConfig = DetectorConfig()
    recognition: RecognitionConfig = RecognitionConfig()
    quality: QualityConfig = QualityConfig()
    cache: CacheConfig = CacheConfig()
    timeouts: TimeoutConfig = TimeoutConfig()
    speech: SpeechConfig = SpeechConfig()
