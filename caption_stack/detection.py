from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

import numpy as np

from .classification import MODEL_UNAVAILABLE, normalize_label
from .config import PipelineConfig
from .geometry import box_area, pixel_box_to_normalized
from .model_state import LazyModel
from .models import DetectedObject, DetectionResult, NormalizedImage
from .semantic import is_person
from .utils import clamp01, elapsed_ms


logger = logging.getLogger(__name__)


def process_detections(
    predictions: Iterable[dict[str, Any]],
    original_width: int,
    original_height: int,
    cfg: PipelineConfig,
) -> tuple[DetectedObject, ...]:
    objects: list[DetectedObject] = []
    for pred in predictions:
        try:
            score = float(pred.get("score", 0.0))
        except (TypeError, ValueError):
            continue
        if score < cfg.detection_threshold:
            continue
        bbox = pred.get("bbox")
        if bbox is None or len(bbox) < 4:
            continue
        label = str(pred.get("label", "")).strip()
        normalized = normalize_label(label)
        if not normalized:
            continue
        objects.append(
            DetectedObject(
                label=label,
                normalized_label=normalized,
                confidence=clamp01(score),
                bounding_box=pixel_box_to_normalized(bbox, original_width, original_height),
            )
        )
    objects.sort(key=lambda o: o.confidence, reverse=True)
    return tuple(objects[: cfg.max_detected_objects])


def count_people(objects: Iterable[DetectedObject]) -> int:
    return sum(1 for obj in objects if is_person(obj))


def has_people(objects: Iterable[DetectedObject]) -> bool:
    return any(is_person(obj) for obj in objects)


def primary_subject(objects: Iterable[DetectedObject]) -> DetectedObject | None:
    # 70% confidence, 30% box size.
    best: DetectedObject | None = None
    best_score = -1.0
    for obj in objects:
        score = obj.confidence * 0.7 + box_area(obj.bounding_box) * 0.3
        if score > best_score:
            best, best_score = obj, score
    return best


def unique_labels(objects: Iterable[DetectedObject]) -> list[str]:
    return list(dict.fromkeys(obj.normalized_label for obj in objects))


class DetectionAdapter:
    def __init__(
        self,
        cfg: PipelineConfig | None = None,
        loader: Callable[[], Any] | None = None,
        *,
        model_id: str = "yolo",
    ):
        self.cfg = cfg or PipelineConfig()
        self.model_id = model_id
        self.model = LazyModel(
            "detector",
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

    def detect(self, image: NormalizedImage) -> DetectionResult:
        start = time.perf_counter()
        detector = self.model.get()
        if detector is None:
            logger.info("Detector not available, skipping detection")
            return DetectionResult(
                objects=(),
                inference_time_ms=elapsed_ms(start),
                model_id=self.model_id,
                success=True,
                error=MODEL_UNAVAILABLE,
            )

        tensor = np.ascontiguousarray(image.tensor, dtype=np.float32)
        try:
            predictions = detector.detect(tensor, (image.original_width, image.original_height))
            objects = process_detections(predictions or [], image.original_width, image.original_height, self.cfg)
        except Exception as exc:
            logger.warning("Detection failed: %s", exc)
            return DetectionResult(
                objects=(),
                inference_time_ms=elapsed_ms(start),
                model_id=self.model_id,
                success=True,
                error=str(exc) or "Detection failed",
            )
        finally:
            del tensor

        return DetectionResult(
            objects=objects,
            inference_time_ms=elapsed_ms(start),
            model_id=self.model_id,
            success=True,
        )

    def unload(self) -> None:
        self.model.unload()
