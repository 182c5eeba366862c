from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Iterable

import numpy as np

from .config import TEXT_TRIGGER_LABELS, PipelineConfig
from .model_state import LazyModel
from .models import ClassificationLabel, ClassificationResult, NormalizedImage
from .utils import clamp01, elapsed_ms


logger = logging.getLogger(__name__)

MODEL_UNAVAILABLE = "Model not available in current environment"
SEPARATOR_PATTERN = re.compile(r"[_\-]+")
WHITESPACE_PATTERN = re.compile(r"\s+")


def normalize_label(label: str) -> str:
    text = SEPARATOR_PATTERN.sub(" ", (label or "").lower().strip())
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def primary_class_name(class_name: str) -> str:
    # ImageNet-style names list alternatives: "notebook, notebook computer".
    return (class_name or "").split(",")[0].strip()


def contains_term(label: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term)}\b", label) is not None


def has_text_indicator(labels: Iterable[ClassificationLabel], vocabulary: tuple[str, ...] = TEXT_TRIGGER_LABELS) -> bool:
    return any(contains_term(l.normalized_label, term) for l in labels for term in vocabulary)


def process_predictions(predictions: Iterable[dict[str, Any]], cfg: PipelineConfig) -> tuple[ClassificationLabel, ...]:
    labels: list[ClassificationLabel] = []
    for i, pred in enumerate(predictions):
        try:
            score = float(pred.get("score", 0.0))
        except (TypeError, ValueError):
            continue
        if score < cfg.classification_threshold:
            continue
        name = primary_class_name(str(pred.get("label", "")))
        normalized = normalize_label(name)
        if not normalized:
            continue
        labels.append(ClassificationLabel(label=name, normalized_label=normalized, confidence=clamp01(score), index=i))
    labels.sort(key=lambda l: l.confidence, reverse=True)
    return tuple(labels[: cfg.max_classification_labels])


class ClassificationAdapter:
    def __init__(
        self,
        cfg: PipelineConfig | None = None,
        loader: Callable[[], Any] | None = None,
        *,
        model_id: str = "open_clip",
    ):
        self.cfg = cfg or PipelineConfig()
        self.model_id = model_id
        self.model = LazyModel(
            "classifier",
            loader,
            retries=self.cfg.model_load_retries,
            backoff_s=self.cfg.model_load_backoff_s,
        )

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg
        self.model.configure(retries=cfg.model_load_retries, backoff_s=cfg.model_load_backoff_s)

    def initialize(self) -> bool:
        return self.model.get() is not None

    def is_ready(self) -> bool:
        return self.model.loaded

    def classify(self, image: NormalizedImage) -> ClassificationResult:
        start = time.perf_counter()
        classifier = self.model.get()
        if classifier is None:
            logger.info("Classifier not available, skipping classification")
            return ClassificationResult(
                labels=(),
                inference_time_ms=elapsed_ms(start),
                model_id=self.model_id,
                success=True,
                error=MODEL_UNAVAILABLE,
            )

        tensor = np.ascontiguousarray(image.tensor, dtype=np.float32)
        try:
            predictions = classifier.classify(tensor)
            labels = process_predictions(predictions or [], self.cfg)
        except Exception as exc:
            logger.warning("Classification failed: %s", exc)
            return ClassificationResult(
                labels=(),
                inference_time_ms=elapsed_ms(start),
                model_id=self.model_id,
                success=True,
                error=str(exc) or "Classification failed",
            )
        finally:
            del tensor

        return ClassificationResult(
            labels=labels,
            inference_time_ms=elapsed_ms(start),
            model_id=self.model_id,
            success=True,
        )

    def unload(self) -> None:
        self.model.unload()
