from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from .caption import TEMPLATES, CaptionSynthesizer, count_words
from .classification import ClassificationAdapter
from .clip_classifier import load_clip_classifier
from .confidence import DEFAULT_WEIGHTS, ConfidenceScorer
from .config import PipelineConfig
from .detection import DetectionAdapter
from .models import (
    ClassificationResult,
    ConfidenceBreakdown,
    DetectionResult,
    ImageBitmap,
    NormalizedImage,
    OCRResult,
    PipelineResult,
    QualityGateResult,
    SemanticDescription,
    SignalBreakdown,
    StageTiming,
    SynthesizedCaption,
    TemplateSelection,
)
from .ocr import OCRAdapter
from .ocr_engines import load_ocr_engine
from .preprocess import ImageNormalizer, bitmap_from_uri
from .quality_gate import MINIMAL_SAFE_CAPTION, QualityGate, minimal_caption
from .semantic import SemanticNormalizer, empty_description
from .utils import utc_now_iso
from .yolo_detector import load_yolo_detector


logger = logging.getLogger(__name__)

PIPELINE_NAME = "Vision Lite"
PIPELINE_VERSION = "v0.5"


@dataclass
class RunState:
    """Scratchpad for one process_image call; discarded afterwards."""

    bitmap: ImageBitmap
    always_ocr: bool = False
    image: NormalizedImage | None = None
    classification: ClassificationResult | None = None
    detection: DetectionResult | None = None
    ocr: OCRResult | None = None
    semantic: SemanticDescription | None = None
    template: TemplateSelection | None = None
    caption: SynthesizedCaption | None = None
    score: float = 0.0
    breakdown: ConfidenceBreakdown | None = None
    gate: QualityGateResult | None = None
    final_caption: str = MINIMAL_SAFE_CAPTION
    timings: list[StageTiming] = field(default_factory=list)


@dataclass(frozen=True)
class Stage:
    name: str
    required: bool
    run: Callable[["CaptionPipeline", RunState], str]
    fallback: Callable[[RunState, str], None] | None = None


def signal_status(success: bool, error: str | None) -> str:
    if not success:
        return "failed"
    return "skipped" if error else "completed"


def _normalize(p: "CaptionPipeline", s: RunState) -> str:
    s.image = p.normalizer.normalize(s.bitmap)
    return "completed"


def _classify(p: "CaptionPipeline", s: RunState) -> str:
    s.classification = p.classifier.classify(s.image)
    return signal_status(s.classification.success, s.classification.error)


def _detect(p: "CaptionPipeline", s: RunState) -> str:
    s.detection = p.detector.detect(s.image)
    return signal_status(s.detection.success, s.detection.error)


def _ocr(p: "CaptionPipeline", s: RunState) -> str:
    s.ocr = p.ocr.extract_text(s.image, s.classification.labels, always_ocr=s.always_ocr)
    if not s.ocr.triggered:
        return "skipped"
    return signal_status(s.ocr.success, s.ocr.error)


def _semantic(p: "CaptionPipeline", s: RunState) -> str:
    s.semantic = p.semantic.normalize(s.classification, s.detection, s.ocr)
    return "completed"


def _select_template(p: "CaptionPipeline", s: RunState) -> str:
    s.template = p.captioner.select_template(s.semantic)
    return "completed"


def _synthesize(p: "CaptionPipeline", s: RunState) -> str:
    s.caption = p.captioner.synthesize(s.semantic, s.template)
    return "completed"


def _score(p: "CaptionPipeline", s: RunState) -> str:
    s.score, s.breakdown = p.scorer.score(s.classification, s.detection, s.ocr, s.semantic)
    return "completed"


def _gate(p: "CaptionPipeline", s: RunState) -> str:
    s.gate = p.gate.evaluate(s.caption, s.score, s.breakdown)
    s.final_caption, _ = p.gate.apply(s.caption, s.gate)
    return "completed"


def empty_classification(error: str | None = None, model_id: str = "open_clip") -> ClassificationResult:
    return ClassificationResult(labels=(), inference_time_ms=0, model_id=model_id, success=False, error=error)


def empty_detection(error: str | None = None, model_id: str = "yolo") -> DetectionResult:
    return DetectionResult(objects=(), inference_time_ms=0, model_id=model_id, success=False, error=error)


def empty_ocr(error: str | None = None) -> OCRResult:
    return OCRResult(
        triggered=False,
        trigger_reason="not_triggered",
        text_blocks=(),
        extracted_text="",
        text_summary="",
        has_meaningful_text=False,
        processing_time_ms=0,
        success=False,
        error=error,
    )


def _fallback_classification(s: RunState, error: str) -> None:
    s.classification = empty_classification(error)


def _fallback_detection(s: RunState, error: str) -> None:
    s.detection = empty_detection(error)


def _fallback_ocr(s: RunState, error: str) -> None:
    s.ocr = empty_ocr(error)


STAGES: tuple[Stage, ...] = (
    Stage("normalization", True, _normalize),
    Stage("classification", False, _classify, _fallback_classification),
    Stage("detection", False, _detect, _fallback_detection),
    Stage("ocr", False, _ocr, _fallback_ocr),
    Stage("semantic_normalization", True, _semantic),
    Stage("template_selection", True, _select_template),
    Stage("caption_synthesis", True, _synthesize),
    Stage("confidence_scoring", True, _score),
    Stage("quality_gate", True, _gate),
)


class CaptionPipeline:
    def __init__(
        self,
        cfg: PipelineConfig | None = None,
        *,
        classifier_loader: Callable[[], Any] | None = None,
        detector_loader: Callable[[], Any] | None = None,
        ocr_loader: Callable[[], Any] | None = None,
        stages: tuple[Stage, ...] = STAGES,
    ):
        self._config = cfg or PipelineConfig()
        c = self._config
        self.stages = stages
        self.normalizer = ImageNormalizer(c)
        self.classifier = ClassificationAdapter(c, classifier_loader or (lambda: load_clip_classifier(self._config.clip_model_name)))
        self.detector = DetectionAdapter(c, detector_loader or (lambda: load_yolo_detector(self._config.yolo_model_name)))
        self.ocr = OCRAdapter(c, ocr_loader or (lambda: load_ocr_engine(self._config)))
        self.semantic = SemanticNormalizer()
        self.captioner = CaptionSynthesizer(c)
        self.scorer = ConfidenceScorer(c)
        self.gate = QualityGate(c)
        self._initialized = False

    @property
    def config(self) -> PipelineConfig:
        return self._config

    def _log(self, message: str, *args: Any) -> None:
        if self._config.debug_mode:
            logger.info("[%s %s] " + message, PIPELINE_NAME, PIPELINE_VERSION, *args)
        else:
            logger.debug(message, *args)

    def initialize(self) -> dict[str, bool]:
        """Load the three models in parallel. Failures are logged, never raised."""
        adapters = {"classifier": self.classifier, "detector": self.detector, "ocr": self.ocr}
        status: dict[str, bool] = {}
        self._log("Initializing models")
        with ThreadPoolExecutor(max_workers=len(adapters)) as pool:
            futures = {name: pool.submit(adapter.initialize) for name, adapter in adapters.items()}
            for name, future in futures.items():
                try:
                    status[name] = bool(future.result())
                except Exception as exc:
                    logger.warning("%s initialization failed: %s", name, exc)
                    status[name] = False
        self._initialized = True
        self._log("Models ready: %s", status)
        return status

    def is_ready(self) -> bool:
        return self._initialized

    def version_info(self) -> dict[str, str]:
        return {"name": PIPELINE_NAME, "version": PIPELINE_VERSION}

    def update_config(self, **overrides: Any) -> PipelineConfig:
        cfg = self._config.with_overrides(**overrides)
        previous, self._config = self._config, cfg
        for component in (self.normalizer, self.classifier, self.detector, self.ocr, self.captioner, self.scorer, self.gate):
            component.update_config(cfg)
        # A changed model choice drops the loaded instance; the next run loads the new one.
        for fields, holder in (
            (("clip_model_name",), self.classifier.model),
            (("yolo_model_name",), self.detector.model),
            (("ocr_engine", "ocr_languages"), self.ocr.engine),
        ):
            if any(getattr(previous, f) != getattr(cfg, f) for f in fields):
                holder.reset()
        return cfg

    def _run_stage(self, stage: Stage, state: RunState) -> None:
        self._log("Stage: %s", stage.name)
        start = time.perf_counter()
        status = "failed"
        try:
            status = stage.run(self, state)
        except Exception as exc:
            if stage.required or stage.fallback is None:
                raise
            logger.warning("Stage %s failed: %s", stage.name, exc)
            stage.fallback(state, str(exc) or exc.__class__.__name__)
        finally:
            duration = round((time.perf_counter() - start) * 1000, 3)
            state.timings.append(StageTiming(stage=stage.name, duration_ms=duration, status=status))

    def process_image(self, bitmap: ImageBitmap, *, always_ocr: bool = False) -> PipelineResult:
        started = time.perf_counter()
        if not self._initialized:
            self.initialize()

        state = RunState(bitmap=bitmap, always_ocr=always_ocr)
        try:
            for stage in self.stages:
                self._run_stage(stage, state)
        except Exception as exc:
            logger.exception("Pipeline error")
            return self._error_result(str(exc) or exc.__class__.__name__, started, state.timings)

        elapsed = round((time.perf_counter() - started) * 1000, 3)
        self._log("Pipeline completed in %.1fms", elapsed)
        return PipelineResult(
            caption_text=state.final_caption,
            confidence_score=state.score,
            signal_breakdown=SignalBreakdown(
                classification=state.classification,
                detection=state.detection,
                ocr=state.ocr,
                semantic=state.semantic,
                template_selection=state.template,
                caption=state.caption,
                confidence_breakdown=state.breakdown,
                quality_gate=state.gate,
            ),
            success=True,
            processing_time_ms=elapsed,
            stage_timing=tuple(state.timings),
            version=PIPELINE_VERSION,
            timestamp=utc_now_iso(),
        )

    def process_image_from_uri(self, uri: str, reader: Callable[[str], bytes] | None = None) -> PipelineResult:
        started = time.perf_counter()
        try:
            bitmap = bitmap_from_uri(uri, reader)
        except Exception as exc:
            logger.warning("Failed to load image %s: %s", uri, exc)
            return self._error_result(str(exc) or "Failed to load image", started, [])
        return self.process_image(bitmap)

    def _error_result(self, message: str, started: float, timings: list[StageTiming]) -> PipelineResult:
        fallback = minimal_caption(self._config.max_caption_words)
        breakdown = ConfidenceBreakdown(
            classification_confidence=0.0,
            detection_confidence=0.0,
            ocr_confidence=0.0,
            signal_consistency=0.0,
            weights=DEFAULT_WEIGHTS,
        )
        signals = SignalBreakdown(
            classification=empty_classification(message, self.classifier.model_id),
            detection=empty_detection(model_id=self.detector.model_id),
            ocr=empty_ocr(),
            semantic=empty_description(),
            template_selection=TemplateSelection(
                template="minimal", reason="Pipeline error", template_string=TEMPLATES["minimal"]
            ),
            caption=SynthesizedCaption(
                text=fallback,
                word_count=count_words(fallback),
                template="minimal",
            ),
            confidence_breakdown=breakdown,
            quality_gate=QualityGateResult(
                passed=False,
                threshold=self._config.quality_gate_threshold,
                actual_confidence=0.0,
                recommend_cloud_escalation=True,
                reason=f"Pipeline error: {message}",
            ),
        )
        return PipelineResult(
            caption_text=fallback,
            confidence_score=0.0,
            signal_breakdown=signals,
            success=False,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
            stage_timing=tuple(timings),
            version=PIPELINE_VERSION,
            timestamp=utc_now_iso(),
            error=message,
        )

    def close(self) -> None:
        for adapter in (self.classifier, self.detector, self.ocr):
            adapter.unload()
        self._initialized = False

    def __enter__(self) -> "CaptionPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
