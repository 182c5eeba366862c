from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

import numpy as np


IMAGE_TYPES: tuple[str, ...] = ("photo", "screenshot", "document", "diagram", "mixed", "unknown")
ENVIRONMENTS: tuple[str, ...] = ("indoor", "outdoor", "unknown")
STAGE_STATUSES: tuple[str, ...] = ("completed", "failed", "skipped")
TRIGGER_REASONS: tuple[str, ...] = ("user_enabled", "classification_hint", "not_triggered")


def check_choice(field_name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"{field_name} must be one of {choices}, got {value!r}")


@dataclass(frozen=True)
class ImageBitmap:
    data: bytes | str  # encoded bytes, path / file:// URI, data URL or base64
    width: int
    height: int
    mime_type: str
    orientation_corrected: bool = False


@dataclass(frozen=True)
class Preprocessing:
    resized: bool
    color_normalized: bool
    target_size: int
    placeholder: bool = False


@dataclass(frozen=True)
class NormalizedImage:
    tensor: np.ndarray  # float32, (target, target, 3), values in [0, 1]
    width: int
    height: int
    original_width: int
    original_height: int
    preprocessing: Preprocessing
    raw_pixels: np.ndarray | None = None  # uint8 RGB at original size
    encoded_bytes: bytes | None = None
    uri: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ClassificationLabel:
    label: str
    normalized_label: str
    confidence: float
    index: int


@dataclass(frozen=True)
class ClassificationResult:
    labels: tuple[ClassificationLabel, ...]
    inference_time_ms: int
    model_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class DetectedObject:
    label: str
    normalized_label: str
    confidence: float
    bounding_box: BoundingBox


@dataclass(frozen=True)
class DetectionResult:
    objects: tuple[DetectedObject, ...]
    inference_time_ms: int
    model_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class TextBlock:
    text: str
    confidence: float
    bounding_box: BoundingBox
    language: str = "en"


@dataclass(frozen=True)
class OCRResult:
    triggered: bool
    trigger_reason: str
    text_blocks: tuple[TextBlock, ...]
    extracted_text: str
    text_summary: str
    has_meaningful_text: bool
    processing_time_ms: int
    success: bool
    error: str | None = None

    def __post_init__(self) -> None:
        check_choice("trigger_reason", self.trigger_reason, TRIGGER_REASONS)


@dataclass(frozen=True)
class SemanticDescription:
    type: str
    primary_subjects: tuple[str, ...]
    secondary_objects: tuple[str, ...]
    environment: str
    text_present: bool
    person_count: int
    all_labels: tuple[str, ...]
    text_content: str | None = None
    action_context: str | None = None

    def __post_init__(self) -> None:
        check_choice("type", self.type, IMAGE_TYPES)
        check_choice("environment", self.environment, ENVIRONMENTS)


@dataclass(frozen=True)
class TemplateSelection:
    template: str
    reason: str
    template_string: str


@dataclass(frozen=True)
class SynthesizedCaption:
    text: str
    word_count: int
    template: str
    substitutions: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConfidenceWeights:
    classification: float
    detection: float
    ocr: float
    consistency: float


@dataclass(frozen=True)
class ConfidenceBreakdown:
    classification_confidence: float
    detection_confidence: float
    ocr_confidence: float
    signal_consistency: float
    weights: ConfidenceWeights


@dataclass(frozen=True)
class QualityGateResult:
    passed: bool
    threshold: float
    actual_confidence: float
    recommend_cloud_escalation: bool
    reason: str


@dataclass(frozen=True)
class SignalBreakdown:
    classification: ClassificationResult
    detection: DetectionResult
    ocr: OCRResult
    semantic: SemanticDescription
    template_selection: TemplateSelection
    caption: SynthesizedCaption
    confidence_breakdown: ConfidenceBreakdown
    quality_gate: QualityGateResult


@dataclass(frozen=True)
class StageTiming:
    stage: str
    duration_ms: float
    status: str

    def __post_init__(self) -> None:
        check_choice("status", self.status, STAGE_STATUSES)


@dataclass(frozen=True)
class PipelineResult:
    caption_text: str
    confidence_score: float
    signal_breakdown: SignalBreakdown
    success: bool
    processing_time_ms: float
    stage_timing: tuple[StageTiming, ...]
    version: str
    timestamp: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
