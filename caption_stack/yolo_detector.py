from __future__ import annotations

from typing import Any

import numpy as np

from .geometry import normalized_box_to_pixels
from .models import BoundingBox
from .utils import cleanup_torch_mps


class YOLODetector:
    """ultralytics YOLO wrapper.

    ``detect`` runs on the pipeline tensor and reports boxes as
    ``(x, y, w, h)`` pixels of the original image.
    """

    def __init__(self, model_ref: str, min_score: float = 0.05):
        self.model_ref = model_ref
        self.min_score = min_score
        self.model = None

    def load(self) -> "YOLODetector":
        try:
            from ultralytics import YOLO  # type: ignore
        except Exception as exc:
            raise RuntimeError("ultralytics is required for object detection") from exc
        self.model = YOLO(self.model_ref)
        return self

    def unload(self) -> None:
        self.model = None
        cleanup_torch_mps()

    def detect(self, tensor: np.ndarray, original_size: tuple[int, int]) -> list[dict[str, Any]]:
        if self.model is None:
            raise RuntimeError("YOLO model not loaded")
        width, height = original_size
        # ultralytics treats numpy input as BGR uint8.
        frame = np.ascontiguousarray(np.clip(np.rint(tensor * 255.0), 0, 255).astype(np.uint8)[..., ::-1])
        try:
            results = self.model.predict(frame, conf=self.min_score, verbose=False)
        finally:
            del frame

        out: list[dict[str, Any]] = []
        for result in results:
            names = result.names
            boxes = result.boxes
            if boxes is None:
                continue
            for xywhn, cls_id, score in zip(boxes.xywhn.tolist(), boxes.cls.tolist(), boxes.conf.tolist()):
                cx, cy, w, h = xywhn
                box = BoundingBox(x=cx - w / 2.0, y=cy - h / 2.0, width=w, height=h)
                out.append(
                    {
                        "label": str(names.get(int(cls_id), cls_id)) if isinstance(names, dict) else str(names[int(cls_id)]),
                        "score": float(score),
                        "bbox": normalized_box_to_pixels(box, width, height),
                    }
                )
        return out


def load_yolo_detector(model_ref: str) -> YOLODetector:
    return YOLODetector(model_ref).load()
