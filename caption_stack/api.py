from __future__ import annotations

from pathlib import Path
from typing import Any

from .config import PipelineConfig
from .models import ImageBitmap
from .pipeline import CaptionPipeline


def caption_image(
    image_path: str,
    *,
    always_ocr: bool = False,
    cfg: PipelineConfig | None = None,
    **loaders: Any,
) -> dict[str, Any]:
    c = cfg or PipelineConfig()
    if always_ocr:
        c = c.with_overrides(always_run_ocr=True)
    with CaptionPipeline(c, **loaders) as pipeline:
        result = pipeline.process_image_from_uri(str(Path(image_path).expanduser().resolve()))
    return result.to_dict()


def caption_bytes(
    data: bytes,
    mime_type: str,
    *,
    width: int = 0,
    height: int = 0,
    always_ocr: bool = False,
    cfg: PipelineConfig | None = None,
    **loaders: Any,
) -> dict[str, Any]:
    bitmap = ImageBitmap(data=data, width=width, height=height, mime_type=mime_type)
    with CaptionPipeline(cfg, **loaders) as pipeline:
        result = pipeline.process_image(bitmap, always_ocr=always_ocr)
    return result.to_dict()


def pipeline_info(cfg: PipelineConfig | None = None) -> dict[str, Any]:
    c = cfg or PipelineConfig()
    pipeline = CaptionPipeline(c)
    return {
        **pipeline.version_info(),
        "clip_model": c.clip_model_name,
        "yolo_model": c.yolo_model_name,
        "ocr_engine": c.ocr_engine,
        "quality_gate_threshold": c.quality_gate_threshold,
        "max_caption_words": c.max_caption_words,
    }
