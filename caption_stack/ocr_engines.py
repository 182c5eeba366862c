from __future__ import annotations

import io
import logging
import platform
from typing import Any

from .config import PipelineConfig


logger = logging.getLogger(__name__)


def _load_cg_image(image_bytes: bytes):
    from Foundation import NSData
    from Quartz import CGImageSourceCreateImageAtIndex, CGImageSourceCreateWithData

    data = NSData.dataWithBytes_length_(image_bytes, len(image_bytes))
    src = CGImageSourceCreateWithData(data, None)
    if src is None:
        raise RuntimeError("Cannot read image for OCR")
    cg_image = CGImageSourceCreateImageAtIndex(src, 0, None)
    if cg_image is None:
        raise RuntimeError("Cannot decode image for OCR")
    return cg_image


class VisionOCREngine:
    """Apple Vision text recognition (macOS, via pyobjc)."""

    def __init__(self, languages: tuple[str, ...] = ("en-US",)):
        self.languages = list(languages)

    def load(self) -> "VisionOCREngine":
        try:
            import Vision  # noqa: F401
            import Quartz  # noqa: F401
        except Exception as exc:
            raise RuntimeError("pyobjc-framework-Vision is required for Vision OCR") from exc
        return self

    def recognize(self, image_bytes: bytes) -> dict[str, Any]:
        import Vision
        from Quartz import CGImageGetHeight, CGImageGetWidth

        request = Vision.VNRecognizeTextRequest.alloc().init()
        if hasattr(request, "setRecognitionLevel_"):
            request.setRecognitionLevel_(Vision.VNRequestTextRecognitionLevelAccurate)
        if hasattr(request, "setUsesLanguageCorrection_"):
            request.setUsesLanguageCorrection_(True)
        if hasattr(request, "setRecognitionLanguages_"):
            try:
                request.setRecognitionLanguages_(self.languages)
            except Exception as exc:
                logger.debug("Vision rejected languages %s: %s", self.languages, exc)

        cg_image = _load_cg_image(image_bytes)
        width = float(CGImageGetWidth(cg_image))
        height = float(CGImageGetHeight(cg_image))

        handler = Vision.VNImageRequestHandler.alloc().initWithCGImage_options_(cg_image, None)
        result = handler.performRequests_error_([request], None)
        if isinstance(result, tuple):
            ok, err = result
        else:
            ok, err = bool(result), None
        if not ok:
            raise RuntimeError(f"Vision OCR failed: {err}")

        blocks: list[dict[str, Any]] = []
        for obs in request.results() or []:
            candidates = obs.topCandidates_(1)
            if not candidates:
                continue
            cand = candidates[0]
            text = str(cand.string() or "").strip()
            if not text:
                continue
            try:
                conf = float(cand.confidence())
            except Exception:
                conf = 0.0

            bbox = obs.boundingBox()
            x = float(getattr(bbox, "origin").x)
            y = float(getattr(bbox, "origin").y)
            w = float(getattr(bbox, "size").width)
            h = float(getattr(bbox, "size").height)

            # Vision uses normalized bottom-left coordinates.
            blocks.append(
                {
                    "text": text,
                    "confidence": conf,
                    "bbox": (x * width, (1.0 - (y + h)) * height, w * width, h * height),
                    "language": self.languages[0].split("-")[0] if self.languages else "en",
                }
            )

        text = "\n".join(b["text"] for b in blocks)
        conf = sum(b["confidence"] for b in blocks) / len(blocks) if blocks else 0.0
        return {"text": text, "confidence": conf, "blocks": blocks}


class TesseractOCREngine:
    """Tesseract via pytesseract; words are grouped into Tesseract's blocks."""

    def __init__(self, lang: str = "eng"):
        self.lang = lang

    def load(self) -> "TesseractOCREngine":
        try:
            import pytesseract

            pytesseract.get_tesseract_version()
        except Exception as exc:
            raise RuntimeError("pytesseract and a tesseract binary are required for Tesseract OCR") from exc
        return self

    def recognize(self, image_bytes: bytes) -> dict[str, Any]:
        import pytesseract
        from PIL import Image
        from pytesseract import Output

        with Image.open(io.BytesIO(image_bytes)) as img:
            data = pytesseract.image_to_data(img, lang=self.lang, output_type=Output.DICT)

        grouped: dict[tuple[int, int], dict[str, Any]] = {}
        for i, word in enumerate(data.get("text", [])):
            word = str(word or "").strip()
            try:
                conf = float(data["conf"][i])
            except (KeyError, TypeError, ValueError):
                conf = -1.0
            if not word or conf < 0:
                continue
            key = (int(data["page_num"][i]), int(data["block_num"][i]))
            x, y = float(data["left"][i]), float(data["top"][i])
            x2, y2 = x + float(data["width"][i]), y + float(data["height"][i])
            entry = grouped.setdefault(key, {"words": [], "confs": [], "box": [x, y, x2, y2]})
            entry["words"].append(word)
            entry["confs"].append(conf / 100.0)
            box = entry["box"]
            entry["box"] = [min(box[0], x), min(box[1], y), max(box[2], x2), max(box[3], y2)]

        blocks = []
        for entry in grouped.values():
            x1, y1, x2, y2 = entry["box"]
            blocks.append(
                {
                    "text": " ".join(entry["words"]),
                    "confidence": sum(entry["confs"]) / len(entry["confs"]),
                    "bbox": (x1, y1, x2 - x1, y2 - y1),
                    "language": "en" if self.lang == "eng" else self.lang,
                }
            )

        text = "\n".join(b["text"] for b in blocks)
        conf = sum(b["confidence"] for b in blocks) / len(blocks) if blocks else 0.0
        return {"text": text, "confidence": conf, "blocks": blocks}


def load_ocr_engine(cfg: PipelineConfig):
    choice = cfg.ocr_engine
    if choice == "auto":
        choice = "vision" if platform.system() == "Darwin" else "tesseract"
    if choice == "vision":
        return VisionOCREngine(cfg.ocr_languages).load()
    return TesseractOCREngine().load()
