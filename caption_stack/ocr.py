from __future__ import annotations

import io
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import numpy as np

from .classification import contains_term
from .config import TEXT_TRIGGER_LABELS, PipelineConfig
from .geometry import FULL_FRAME, pixel_box_to_normalized
from .model_state import LazyModel
from .models import ClassificationLabel, NormalizedImage, OCRResult, TextBlock
from .utils import clamp01, elapsed_ms


logger = logging.getLogger(__name__)

TRIGGER_MIN_CONFIDENCE = 0.3
WORD_BOUNDARY_RATIO = 0.7
ELLIPSIS = "..."
DEFAULT_LANGUAGE = "en"


@dataclass(frozen=True)
class OCRTriggerDecision:
    trigger: bool
    reason: str  # user_enabled | classification_hint | not_triggered


@dataclass(frozen=True)
class TransportImage:
    data: bytes
    width: int
    height: int
    source: str  # raw_pixels | tensor | encoded_bytes


def decide_trigger(
    labels: Iterable[ClassificationLabel],
    always_ocr: bool = False,
    vocabulary: tuple[str, ...] = TEXT_TRIGGER_LABELS,
) -> OCRTriggerDecision:
    if always_ocr:
        return OCRTriggerDecision(trigger=True, reason="user_enabled")

    for label in labels:
        if label.confidence <= TRIGGER_MIN_CONFIDENCE:
            continue
        normalized = label.normalized_label.lower()
        if any(contains_term(normalized, term) for term in vocabulary):
            return OCRTriggerDecision(trigger=True, reason="classification_hint")

    return OCRTriggerDecision(trigger=False, reason="not_triggered")


def _encode_png(pixels: np.ndarray) -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    with Image.fromarray(pixels) as img:
        img.save(buffer, format="PNG")
    return buffer.getvalue()


def denormalize_tensor(tensor: np.ndarray) -> np.ndarray:
    """Map a float tensor back to uint8 pixels, accepting [0, 1] or [-1, 1] data."""
    values = np.asarray(tensor, dtype=np.float32)
    if values.size and float(values.min()) < 0.0:
        scaled = (values + 1.0) * 127.5
    else:
        scaled = values * 255.0
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def to_transport(image: NormalizedImage) -> TransportImage:
    """Pick the best available representation and encode it for the OCR engine.

    Preference: decoded pixels, then the tensor mapped back to pixels, then the
    original encoded bytes. Each intermediate array is released before the
    next one is produced.
    """
    raw = image.raw_pixels
    if raw is not None and raw.ndim == 3 and raw.shape[2] >= 3:
        rgb = np.ascontiguousarray(raw[..., :3], dtype=np.uint8)
        try:
            data = _encode_png(rgb)
        finally:
            del rgb
        return TransportImage(data=data, width=int(raw.shape[1]), height=int(raw.shape[0]), source="raw_pixels")

    tensor = image.tensor
    usable_tensor = (
        tensor is not None
        and not image.preprocessing.placeholder
        and tensor.ndim == 3
        and tensor.shape[2] in (3, 4)
    )
    if usable_tensor:
        pixels = denormalize_tensor(tensor[..., :3])
        try:
            data = _encode_png(pixels)
        finally:
            del pixels
        return TransportImage(data=data, width=int(tensor.shape[1]), height=int(tensor.shape[0]), source="tensor")

    if image.encoded_bytes:
        return TransportImage(
            data=image.encoded_bytes,
            width=image.original_width,
            height=image.original_height,
            source="encoded_bytes",
        )

    raise ValueError("No valid image data for OCR")


def convert_blocks(raw: dict[str, Any], frame_width: int, frame_height: int) -> tuple[TextBlock, ...]:
    blocks: list[TextBlock] = []
    for item in raw.get("blocks") or []:
        text = str(item.get("text") or "").strip()
        if not text:
            continue
        bbox = item.get("bbox")
        box = pixel_box_to_normalized(bbox, frame_width, frame_height) if bbox is not None else FULL_FRAME
        blocks.append(
            TextBlock(
                text=text,
                confidence=clamp01(item.get("confidence", 0.0)),
                bounding_box=box,
                language=str(item.get("language") or DEFAULT_LANGUAGE),
            )
        )

    full_text = str(raw.get("text") or "").strip()
    if not blocks and full_text:
        blocks.append(
            TextBlock(
                text=full_text,
                confidence=clamp01(raw.get("confidence", 0.0)),
                bounding_box=FULL_FRAME,
                language=DEFAULT_LANGUAGE,
            )
        )
    return tuple(blocks)


def combine_text_blocks(blocks: Iterable[TextBlock]) -> str:
    ordered = sorted(blocks, key=lambda b: b.bounding_box.y)
    return " ".join(b.text.strip() for b in ordered if b.text.strip())


def clean_text(text: str) -> str:
    t = re.sub(r"\s+", " ", text or "")
    t = re.sub(r"\.{2,}", ".", t)
    t = re.sub(r",{2,}", ",", t)
    t = t.replace("|", "I")
    return t.strip()


def summarize_text(text: str, max_length: int) -> str:
    cleaned = clean_text(text)
    if len(cleaned) <= max_length:
        return cleaned
    truncated = cleaned[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * WORD_BOUNDARY_RATIO:
        return truncated[:last_space] + ELLIPSIS
    return truncated + ELLIPSIS


def is_text_meaningful(text: str) -> bool:
    if not text or len(text) < 3:
        return False
    words = text.split()
    if not words:
        return False
    if sum(len(w) for w in words) / len(words) < 2:
        return False
    readable = len(re.sub(r"[^a-zA-Z0-9\s]", "", text))
    return readable / len(text) >= 0.5


def average_confidence(blocks: Iterable[TextBlock]) -> float:
    values = [b.confidence for b in blocks]
    return sum(values) / len(values) if values else 0.0


class OCRAdapter:
    def __init__(self, cfg: PipelineConfig | None = None, loader: Callable[[], Any] | None = None):
        self.cfg = cfg or PipelineConfig()
        self.engine = LazyModel(
            "ocr",
            loader,
            retries=self.cfg.model_load_retries,
            backoff_s=self.cfg.model_load_backoff_s,
        )

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg
        self.engine.configure(retries=cfg.model_load_retries, backoff_s=cfg.model_load_backoff_s)

    def initialize(self) -> bool:
        return self.engine.get() is not None

    def is_ready(self) -> bool:
        return self.engine.loaded

    def should_trigger(self, labels: Iterable[ClassificationLabel], always_ocr: bool = False) -> OCRTriggerDecision:
        return decide_trigger(labels, always_ocr or self.cfg.always_run_ocr)

    def _empty(self, decision: OCRTriggerDecision, start: float, error: str | None = None) -> OCRResult:
        return OCRResult(
            triggered=decision.trigger,
            trigger_reason=decision.reason,
            text_blocks=(),
            extracted_text="",
            text_summary="",
            has_meaningful_text=False,
            processing_time_ms=elapsed_ms(start),
            success=True,
            error=error,
        )

    def extract_text(
        self,
        image: NormalizedImage,
        labels: Iterable[ClassificationLabel] = (),
        always_ocr: bool = False,
    ) -> OCRResult:
        start = time.perf_counter()
        decision = self.should_trigger(labels, always_ocr)
        if not decision.trigger:
            return self._empty(decision, start)

        engine = self.engine.get()
        if engine is None:
            logger.info("OCR engine not available, skipping OCR")
            return self._empty(decision, start, error="OCR engine not available")

        try:
            transport = to_transport(image)
            raw = engine.recognize(transport.data) or {}
            blocks = convert_blocks(raw, transport.width, transport.height)
            del transport
        except Exception as exc:
            logger.warning("OCR failed: %s", exc)
            return self._empty(decision, start, error=str(exc) or "OCR failed")

        extracted = combine_text_blocks(blocks)
        logger.debug("OCR extracted %d blocks, %d chars", len(blocks), len(extracted))
        return OCRResult(
            triggered=True,
            trigger_reason=decision.reason,
            text_blocks=blocks,
            extracted_text=extracted,
            text_summary=summarize_text(extracted, self.cfg.max_text_summary_length) if extracted else "",
            has_meaningful_text=is_text_meaningful(extracted),
            processing_time_ms=elapsed_ms(start),
            success=True,
        )

    def unload(self) -> None:
        self.engine.unload()
