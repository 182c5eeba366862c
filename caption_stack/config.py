from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class PipelineConfig:
    target_image_size: int = 224

    classification_threshold: float = 0.3
    detection_threshold: float = 0.4
    max_classification_labels: int = 5
    max_detected_objects: int = 10

    quality_gate_threshold: float = 0.5

    always_run_ocr: bool = False
    max_text_summary_length: int = 50
    max_caption_words: int = 20

    debug_mode: bool = False

    # 0 keeps a failed model load failed for the process lifetime.
    model_load_retries: int = 0
    model_load_backoff_s: float = 0.5

    clip_model_name: str = os.getenv("CAPTION_STACK_CLIP_MODEL", "open_clip:ViT-B-32/laion2b_s34b_b79k")
    yolo_model_name: str = os.getenv("CAPTION_STACK_YOLO_MODEL", "yolov8n.pt")
    ocr_engine: str = os.getenv("CAPTION_STACK_OCR_ENGINE", "auto")  # auto | vision | tesseract
    ocr_languages: tuple[str, ...] = ("en-US",)

    def __post_init__(self) -> None:
        if self.target_image_size < 1:
            raise ValueError("target_image_size must be positive")
        for name in ("classification_threshold", "detection_threshold", "quality_gate_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.max_classification_labels < 1 or self.max_detected_objects < 1:
            raise ValueError("label/object caps must be positive")
        if self.max_text_summary_length < 1:
            raise ValueError("max_text_summary_length must be positive")
        if self.max_caption_words < 1:
            raise ValueError("max_caption_words must be positive")
        if self.model_load_retries < 0:
            raise ValueError("model_load_retries must be >= 0")
        if self.ocr_engine not in ("auto", "vision", "tesseract"):
            raise ValueError(f"Unknown OCR engine: {self.ocr_engine}")

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        return replace(self, **overrides)


ACCEPTED_MIME_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")

EXTENSION_MIME_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


# Classifier labels that suggest readable text in the frame.
TEXT_TRIGGER_LABELS: tuple[str, ...] = (
    "text",
    "document",
    "screen",
    "poster",
    "diagram",
    "menu",
    "book",
    "newspaper",
    "magazine",
    "letter",
    "envelope",
    "sign",
    "banner",
    "label",
    "monitor",
    "television",
    "web site",
    "receipt",
    "whiteboard",
)

INDOOR_LABELS: tuple[str, ...] = (
    "indoor",
    "room",
    "office",
    "kitchen",
    "bedroom",
    "bathroom",
    "living room",
    "dining room",
    "library",
    "restaurant",
    "shop",
    "store",
    "gym",
    "studio",
)

OUTDOOR_LABELS: tuple[str, ...] = (
    "outdoor",
    "sky",
    "mountain",
    "beach",
    "forest",
    "park",
    "street",
    "road",
    "garden",
    "field",
    "lake",
    "ocean",
    "river",
    "cityscape",
)

PERSON_LABELS: tuple[str, ...] = (
    "person",
    "man",
    "woman",
    "child",
    "boy",
    "girl",
    "people",
    "crowd",
    "face",
    "portrait",
)

DOCUMENT_INDICATORS: tuple[str, ...] = ("document", "paper", "letter", "book", "newspaper")
DIAGRAM_INDICATORS: tuple[str, ...] = ("diagram", "chart", "graph", "flowchart")
SCREEN_INDICATORS: tuple[str, ...] = ("screen", "monitor", "display", "interface", "app")

# Everything on the left collapses onto the label on the right.
SYNONYM_MAP: dict[str, str] = {
    "man": "person",
    "woman": "person",
    "boy": "person",
    "girl": "person",
    "child": "person",
    "adult": "person",
    "people": "person",
    "human": "person",
    "face": "person",
    "portrait": "person",
    "crowd": "person",
    "notebook": "laptop",
    "computer": "laptop",
    "pc": "laptop",
    "macbook": "laptop",
    "notebook computer": "laptop",
    "cell phone": "phone",
    "mobile phone": "phone",
    "smartphone": "phone",
    "iphone": "phone",
    "cellular telephone": "phone",
    "couch": "sofa",
    "settee": "sofa",
    "dining table": "table",
    "desk": "table",
    "coffee table": "table",
    "automobile": "car",
    "vehicle": "car",
    "suv": "car",
    "sedan": "car",
    "meal": "food",
    "dish": "food",
    "cuisine": "food",
    "living room": "room",
    "bedroom": "room",
    "office": "room",
    "kitchen": "room",
    "tv": "television",
}

# Object label -> action phrase, only consulted when a person is present.
ACTION_INDICATORS: dict[str, str] = {
    "laptop": "using a laptop",
    "phone": "using a phone",
    "book": "reading",
    "food": "eating",
    "cup": "drinking",
    "keyboard": "typing",
    "camera": "taking photos",
    "sports ball": "playing sports",
    "bicycle": "cycling",
    "surfboard": "surfing",
    "skis": "skiing",
}

# Zero-shot vocabulary for the default classifier. No identity, demographic
# or emotion terms.
CLASSIFIER_VOCABULARY: tuple[str, ...] = (
    "person",
    "people",
    "laptop",
    "phone",
    "keyboard",
    "television",
    "monitor",
    "screen",
    "web site",
    "document",
    "paper",
    "letter",
    "book",
    "newspaper",
    "magazine",
    "menu",
    "poster",
    "sign",
    "receipt",
    "diagram",
    "chart",
    "graph",
    "whiteboard",
    "table",
    "chair",
    "sofa",
    "bed",
    "lamp",
    "kitchen",
    "bathroom",
    "office",
    "library",
    "restaurant",
    "shop",
    "gym",
    "food",
    "cup",
    "bottle",
    "bowl",
    "cake",
    "pizza",
    "car",
    "bicycle",
    "bus",
    "train",
    "boat",
    "airplane",
    "dog",
    "cat",
    "bird",
    "horse",
    "flower",
    "tree",
    "plant",
    "sky",
    "mountain",
    "beach",
    "forest",
    "park",
    "street",
    "road",
    "garden",
    "field",
    "lake",
    "ocean",
    "river",
    "cityscape",
    "camera",
    "clock",
    "sports ball",
    "surfboard",
    "skis",
)
