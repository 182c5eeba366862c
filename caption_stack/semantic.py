"""Signal fusion: classifier labels, detections and OCR into one description.

Pure functions only, no model access. The steps run in a fixed order:
collect, collapse synonyms, rank, image type, environment, people,
subjects, action.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import (
    ACTION_INDICATORS,
    DIAGRAM_INDICATORS,
    DOCUMENT_INDICATORS,
    INDOOR_LABELS,
    OUTDOOR_LABELS,
    PERSON_LABELS,
    SCREEN_INDICATORS,
    SYNONYM_MAP,
)
from .models import ClassificationResult, DetectedObject, DetectionResult, OCRResult, SemanticDescription


PERSON_MIN_CONFIDENCE = 0.4
ACTION_MIN_CONFIDENCE = 0.4
ENVIRONMENT_MIN_SCORE = 0.3
PRIMARY_MIN_CONFIDENCE = 0.6
SECONDARY_MIN_CONFIDENCE = 0.3
MAX_PRIMARY_SUBJECTS = 3
MAX_SECONDARY_OBJECTS = 5
DOCUMENT_MIN_BLOCKS = 3
REPEAT_BOOST = 0.1


@dataclass(frozen=True)
class ScoredLabel:
    label: str
    confidence: float


def canonical_label(label: str) -> str:
    return SYNONYM_MAP.get(label, label)


def collect_labels(classification: ClassificationResult, detection: DetectionResult) -> list[ScoredLabel]:
    labels = [ScoredLabel(l.normalized_label, l.confidence) for l in classification.labels]
    labels.extend(ScoredLabel(o.normalized_label, o.confidence) for o in detection.objects)
    return labels


def collapse_synonyms(labels: list[ScoredLabel]) -> list[ScoredLabel]:
    """Merge synonyms onto one label, keeping the max confidence.

    Each occurrence beyond the first adds 10% of that max, capped at 1.0.
    Result is sorted by confidence, highest first.
    """
    merged: dict[str, tuple[float, int]] = {}
    for item in labels:
        key = canonical_label(item.label)
        best, count = merged.get(key, (0.0, 0))
        merged[key] = (max(best, item.confidence), count + 1)

    out = [
        ScoredLabel(label, min(1.0, best * (1.0 + (count - 1) * REPEAT_BOOST)))
        for label, (best, count) in merged.items()
    ]
    out.sort(key=lambda l: l.confidence, reverse=True)
    return out


def _any_in(labels: list[str], indicators: tuple[str, ...]) -> bool:
    return any(l in indicators for l in labels)


def classify_image_type(classification: ClassificationResult, ocr: OCRResult) -> str:
    labels = [l.normalized_label for l in classification.labels]

    if ocr.has_meaningful_text and len(ocr.text_blocks) >= DOCUMENT_MIN_BLOCKS:
        if _any_in(labels, DOCUMENT_INDICATORS):
            return "document"
        if _any_in(labels, DIAGRAM_INDICATORS):
            return "diagram"
        if _any_in(labels, SCREEN_INDICATORS):
            return "screenshot"

    if _any_in(labels, SCREEN_INDICATORS):
        return "screenshot"
    if _any_in(labels, DIAGRAM_INDICATORS):
        return "diagram"
    if ocr.has_meaningful_text and _any_in(labels, PERSON_LABELS):
        return "mixed"
    return "photo"


def is_environment_label(label: str) -> bool:
    return label in INDOOR_LABELS or label in OUTDOOR_LABELS


def determine_environment(labels: list[ScoredLabel]) -> str:
    indoor = sum(l.confidence for l in labels if l.label in INDOOR_LABELS)
    outdoor = sum(l.confidence for l in labels if l.label in OUTDOOR_LABELS)
    if indoor > outdoor and indoor > ENVIRONMENT_MIN_SCORE:
        return "indoor"
    if outdoor > indoor and outdoor > ENVIRONMENT_MIN_SCORE:
        return "outdoor"
    return "unknown"


def is_person(obj: DetectedObject) -> bool:
    return canonical_label(obj.normalized_label) == "person" and obj.confidence > PERSON_MIN_CONFIDENCE


def count_people(labels: list[ScoredLabel], detection: DetectionResult) -> int:
    boxes = [o for o in detection.objects if is_person(o)]
    if boxes:
        return len(boxes)
    person = next((l for l in labels if l.label == "person"), None)
    return 1 if person is not None and person.confidence > PERSON_MIN_CONFIDENCE else 0


def rank_subjects(labels: list[ScoredLabel], person_count: int) -> tuple[tuple[str, ...], tuple[str, ...]]:
    primary: list[str] = ["person"] if person_count > 0 else []
    secondary: list[str] = []

    candidates = [l for l in labels if l.label != "person" and not is_environment_label(l.label)]
    for l in candidates:
        if l.confidence > PRIMARY_MIN_CONFIDENCE and l.label not in primary:
            primary.append(l.label)
    for l in candidates:
        if SECONDARY_MIN_CONFIDENCE <= l.confidence <= PRIMARY_MIN_CONFIDENCE:
            if l.label not in primary and l.label not in secondary:
                secondary.append(l.label)

    return tuple(primary[:MAX_PRIMARY_SUBJECTS]), tuple(secondary[:MAX_SECONDARY_OBJECTS])


def infer_action(labels: list[ScoredLabel], person_count: int) -> str | None:
    if person_count <= 0:
        return None
    for l in labels:
        phrase = ACTION_INDICATORS.get(l.label)
        if phrase and l.confidence > ACTION_MIN_CONFIDENCE:
            return phrase
    return None


def person_descriptor(count: int) -> str:
    if count <= 0:
        return ""
    if count == 1:
        return "a person"
    if count == 2:
        return "two people"
    if count <= 5:
        return f"{count} people"
    return "a group of people"


def environment_descriptor(environment: str) -> str:
    return {"indoor": "indoors", "outdoor": "outdoors"}.get(environment, "")


class SemanticNormalizer:
    def normalize(
        self,
        classification: ClassificationResult,
        detection: DetectionResult,
        ocr: OCRResult,
    ) -> SemanticDescription:
        labels = collapse_synonyms(collect_labels(classification, detection))
        person_count = count_people(labels, detection)
        primary, secondary = rank_subjects(labels, person_count)

        return SemanticDescription(
            type=classify_image_type(classification, ocr),
            primary_subjects=primary,
            secondary_objects=secondary,
            environment=determine_environment(labels),
            text_present=ocr.has_meaningful_text,
            text_content=ocr.text_summary if ocr.has_meaningful_text else None,
            person_count=person_count,
            action_context=infer_action(labels, person_count),
            all_labels=tuple(l.label for l in labels),
        )


def empty_description() -> SemanticDescription:
    return SemanticDescription(
        type="unknown",
        primary_subjects=(),
        secondary_objects=(),
        environment="unknown",
        text_present=False,
        person_count=0,
        all_labels=(),
    )
