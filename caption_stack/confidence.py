from __future__ import annotations

from .config import PipelineConfig
from .models import (
    ClassificationResult,
    ConfidenceBreakdown,
    ConfidenceWeights,
    DetectionResult,
    OCRResult,
    SemanticDescription,
)
from .utils import clamp01


DEFAULT_WEIGHTS = ConfidenceWeights(classification=0.35, detection=0.25, ocr=0.15, consistency=0.25)
OCR_ONLY_WEIGHTS = ConfidenceWeights(classification=0.0, detection=0.0, ocr=0.5, consistency=0.5)

OCR_NEUTRAL = 0.5
OCR_EMPTY = 0.2
OCR_MEANINGFUL_BONUS = 0.15
SPREAD_BONUS = 0.3
DETECTION_COUNT_BONUS = 0.02
CONSISTENCY_BASE = 0.5
OCR_ONLY_CONSISTENCY_FLOOR = 0.6


def classification_available(result: ClassificationResult) -> bool:
    return result.success and len(result.labels) > 0


def detection_available(result: DetectionResult) -> bool:
    return result.success and len(result.objects) > 0


def ocr_available(result: OCRResult) -> bool:
    return result.triggered and result.success and result.error is None


def classification_confidence(result: ClassificationResult) -> float:
    if not classification_available(result):
        return 0.0
    top = result.labels[0].confidence
    # A lone label counts as fully separated.
    spread = top - result.labels[1].confidence if len(result.labels) > 1 else 1.0
    return clamp01(top + spread * SPREAD_BONUS)


def detection_confidence(result: DetectionResult) -> float:
    if not detection_available(result):
        return 0.0
    avg = sum(o.confidence for o in result.objects) / len(result.objects)
    return clamp01(avg + min(len(result.objects), 5) * DETECTION_COUNT_BONUS)


def ocr_confidence(result: OCRResult) -> float:
    if not result.triggered:
        return OCR_NEUTRAL
    if not result.success or not result.text_blocks:
        return OCR_EMPTY
    avg = sum(b.confidence for b in result.text_blocks) / len(result.text_blocks)
    return clamp01(avg + (OCR_MEANINGFUL_BONUS if result.has_meaningful_text else 0.0))


def signal_consistency(
    classification: ClassificationResult,
    detection: DetectionResult,
    ocr: OCRResult,
    semantic: SemanticDescription,
) -> float:
    score = CONSISTENCY_BASE

    if classification_available(classification) and detection_available(detection):
        class_labels = {l.normalized_label for l in classification.labels}
        detect_labels = {o.normalized_label for o in detection.objects}
        smaller = min(len(class_labels), len(detect_labels))
        ratio = len(class_labels & detect_labels) / smaller if smaller else 0.0
        score += ratio * 0.3

    if semantic.type in ("document", "screenshot") and ocr.has_meaningful_text:
        score += 0.2
    elif semantic.type == "photo" and (semantic.primary_subjects or semantic.person_count > 0):
        score += 0.2

    if semantic.primary_subjects or semantic.person_count > 0 or ocr.has_meaningful_text:
        score += 0.1

    only_ocr = (
        not classification_available(classification)
        and not detection_available(detection)
        and ocr.triggered
        and ocr.has_meaningful_text
    )
    if only_ocr:
        score = max(score, OCR_ONLY_CONSISTENCY_FLOOR)

    return clamp01(score)


def adjust_weights(
    classification: ClassificationResult,
    detection: DetectionResult,
    ocr: OCRResult,
    base: ConfidenceWeights = DEFAULT_WEIGHTS,
) -> ConfidenceWeights:
    """Drop the weight of every unavailable signal and rescale the rest to sum to 1."""
    has_cls = classification_available(classification)
    has_det = detection_available(detection)
    has_ocr = ocr_available(ocr)

    if not has_cls and not has_det and has_ocr:
        return OCR_ONLY_WEIGHTS

    active = {
        "classification": base.classification if has_cls else 0.0,
        "detection": base.detection if has_det else 0.0,
        "ocr": base.ocr if has_ocr else 0.0,
        "consistency": base.consistency,
    }
    total = sum(active.values())
    if total <= 0:
        return base
    return ConfidenceWeights(**{k: v / total for k, v in active.items()})


def confidence_level(score: float) -> str:
    if score >= 0.8:
        return "high"
    if score >= 0.6:
        return "medium"
    if score >= 0.4:
        return "low"
    return "very_low"


class ConfidenceScorer:
    def __init__(self, cfg: PipelineConfig | None = None):
        self.cfg = cfg or PipelineConfig()

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg

    def score(
        self,
        classification: ClassificationResult,
        detection: DetectionResult,
        ocr: OCRResult,
        semantic: SemanticDescription,
    ) -> tuple[float, ConfidenceBreakdown]:
        breakdown = ConfidenceBreakdown(
            classification_confidence=classification_confidence(classification),
            detection_confidence=detection_confidence(detection),
            ocr_confidence=ocr_confidence(ocr),
            signal_consistency=signal_consistency(classification, detection, ocr, semantic),
            weights=adjust_weights(classification, detection, ocr),
        )
        w = breakdown.weights
        total = (
            breakdown.classification_confidence * w.classification
            + breakdown.detection_confidence * w.detection
            + breakdown.ocr_confidence * w.ocr
            + breakdown.signal_consistency * w.consistency
        )
        return clamp01(total), breakdown

    def meets_threshold(self, score: float) -> bool:
        return score >= self.cfg.quality_gate_threshold
