from __future__ import annotations

from .caption import enforce_word_limit
from .config import PipelineConfig
from .models import ConfidenceBreakdown, QualityGateResult, SynthesizedCaption


MINIMAL_SAFE_CAPTION = "An image with unclear content."
RELIABLE_TEMPLATES: tuple[str, ...] = ("photo_with_person", "photo_with_people", "text_heavy")
BORDERLINE_MARGIN = 0.1
STRONG_SIGNAL = 0.8
STRONG_OCR_SIGNAL = 0.9


def minimal_caption(max_words: int) -> str:
    return enforce_word_limit(MINIMAL_SAFE_CAPTION, max_words)


def has_signal(breakdown: ConfidenceBreakdown) -> bool:
    w = breakdown.weights
    return w.classification > 0 or w.detection > 0 or w.ocr > 0


def failure_reason(score: float, breakdown: ConfidenceBreakdown) -> str:
    reasons: list[str] = []
    if breakdown.classification_confidence < 0.3:
        reasons.append("low classification confidence")
    if breakdown.detection_confidence < 0.3 and breakdown.weights.detection > 0:
        reasons.append("low detection confidence")
    if breakdown.signal_consistency < 0.4:
        reasons.append("inconsistent signals")
    if not reasons:
        return f"Overall confidence {score * 100:.0f}% below threshold"
    return "Low confidence due to: " + ", ".join(reasons)


class QualityGate:
    def __init__(self, cfg: PipelineConfig | None = None):
        self.cfg = cfg or PipelineConfig()

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg

    def is_borderline_pass(self, caption: SynthesizedCaption, score: float, breakdown: ConfidenceBreakdown) -> bool:
        if score < self.cfg.quality_gate_threshold - BORDERLINE_MARGIN:
            return False
        if breakdown.classification_confidence > STRONG_SIGNAL:
            return True
        if breakdown.detection_confidence > STRONG_SIGNAL:
            return True
        if breakdown.ocr_confidence > STRONG_OCR_SIGNAL:
            return True
        return caption.template in RELIABLE_TEMPLATES

    def evaluate(self, caption: SynthesizedCaption, score: float, breakdown: ConfidenceBreakdown) -> QualityGateResult:
        threshold = self.cfg.quality_gate_threshold

        if not has_signal(breakdown):
            return QualityGateResult(
                passed=False,
                threshold=threshold,
                actual_confidence=score,
                recommend_cloud_escalation=True,
                reason="No signal sources available",
            )

        if score >= threshold:
            return QualityGateResult(
                passed=True,
                threshold=threshold,
                actual_confidence=score,
                recommend_cloud_escalation=False,
                reason="Confidence meets threshold",
            )

        if self.is_borderline_pass(caption, score, breakdown):
            return QualityGateResult(
                passed=True,
                threshold=threshold,
                actual_confidence=score,
                recommend_cloud_escalation=True,
                reason="Borderline case passed with cloud escalation recommendation",
            )

        return QualityGateResult(
            passed=False,
            threshold=threshold,
            actual_confidence=score,
            recommend_cloud_escalation=True,
            reason=failure_reason(score, breakdown),
        )

    def apply(self, caption: SynthesizedCaption, result: QualityGateResult) -> tuple[str, bool]:
        if result.passed:
            return caption.text, False
        return minimal_caption(self.cfg.max_caption_words), True
