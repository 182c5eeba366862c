from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

import numpy as np

from .config import ACCEPTED_MIME_TYPES, EXTENSION_MIME_TYPES, PipelineConfig
from .models import ImageBitmap, NormalizedImage, Preprocessing


logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)
BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+=*$")

DEFAULT_URI_WIDTH = 640
DEFAULT_URI_HEIGHT = 480
PLACEHOLDER_VALUE = 0.5


class InvalidImageError(ValueError):
    """Input that can never be captioned: no data or an unsupported mime type."""


class ImageDecodeError(RuntimeError):
    pass


def _load_pillow():
    try:
        from PIL import Image, ImageOps

        return Image, ImageOps
    except Exception as exc:
        raise RuntimeError("Pillow is required for preprocessing. Install with: uv pip install pillow") from exc


def is_file_reference(data: str) -> bool:
    return data.startswith("file://") or data.startswith("/")


def uri_to_path(uri: str) -> Path:
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    return Path(uri)


def looks_like_base64(data: str) -> bool:
    if not data:
        return False
    if DATA_URL_PATTERN.match(data):
        return True
    head = data.split(",", 1)[1] if "," in data else data
    return bool(BASE64_PATTERN.match(re.sub(r"\s", "", head[:100])))


def decode_base64_payload(data: str) -> bytes:
    payload = DATA_URL_PATTERN.sub("", data.strip(), count=1)
    try:
        return base64.b64decode(re.sub(r"\s", "", payload), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Invalid base64 image payload: {exc}") from exc


def mime_type_from_uri(uri: str) -> str:
    suffix = uri_to_path(uri).suffix.lower()
    return EXTENSION_MIME_TYPES.get(suffix, "image/jpeg")


def read_local_bytes(uri: str) -> bytes:
    path = uri_to_path(uri)
    if not path.exists() or not path.is_file():
        raise FileNotFoundError(f"Image not found: {path}")
    return path.read_bytes()


def validate_bitmap(bitmap: ImageBitmap | None) -> None:
    if bitmap is None:
        raise InvalidImageError("ImageBitmap is required")
    if not bitmap.data:
        raise InvalidImageError("Image data is required")
    if bitmap.mime_type not in ACCEPTED_MIME_TYPES:
        raise InvalidImageError(f"Unsupported MIME type: {bitmap.mime_type}")


def resolve_encoded_bytes(bitmap: ImageBitmap) -> bytes:
    data = bitmap.data
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if is_file_reference(data):
        try:
            return read_local_bytes(data)
        except OSError as exc:
            raise ImageDecodeError(f"Cannot read image file: {exc}") from exc
    if looks_like_base64(data):
        return decode_base64_payload(data)
    raise ImageDecodeError("Unknown image data format")


def decode_pixels(encoded: bytes, *, orientation_corrected: bool = False) -> np.ndarray:
    """Decode encoded image bytes into an (H, W, 3) uint8 RGB array."""
    Image, ImageOps = _load_pillow()
    try:
        with Image.open(io.BytesIO(encoded)) as img:
            if not orientation_corrected:
                img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            return np.asarray(img, dtype=np.uint8).copy()
    except Exception as exc:
        raise ImageDecodeError(f"Image decode failed: {exc}") from exc


def resize_nearest(pixels: np.ndarray, target_width: int, target_height: int) -> np.ndarray:
    """Nearest-source-pixel resize: destination (x, y) samples floor(x * src / dst)."""
    height, width = pixels.shape[:2]
    if width == target_width and height == target_height:
        return pixels
    xs = np.minimum((np.arange(target_width) * (width / target_width)).astype(np.int64), width - 1)
    ys = np.minimum((np.arange(target_height) * (height / target_height)).astype(np.int64), height - 1)
    return pixels[ys[:, None], xs[None, :]]


def pixels_to_tensor(pixels: np.ndarray) -> np.ndarray:
    return pixels[..., :3].astype(np.float32) / 255.0


def placeholder_tensor(target_size: int) -> np.ndarray:
    return np.full((target_size, target_size, 3), PLACEHOLDER_VALUE, dtype=np.float32)


def bitmap_from_uri(uri: str, reader: Callable[[str], bytes] | None = None) -> ImageBitmap:
    """Build an ImageBitmap for ``uri`` through ``reader`` (local files by default)."""
    read = reader or read_local_bytes
    encoded = read(uri)
    if not encoded:
        raise InvalidImageError(f"Image file is empty: {uri}")

    width, height = 0, 0
    Image, _ = _load_pillow()
    try:
        with Image.open(io.BytesIO(encoded)) as img:
            width, height = img.size
    except Exception as exc:
        logger.warning("Could not read image header for %s: %s", uri, exc)

    if width == 0 or height == 0:
        width, height = DEFAULT_URI_WIDTH, DEFAULT_URI_HEIGHT

    return ImageBitmap(
        data=encoded,
        width=width,
        height=height,
        mime_type=mime_type_from_uri(uri),
        orientation_corrected=False,
    )


class ImageNormalizer:
    def __init__(self, cfg: PipelineConfig | None = None):
        self.cfg = cfg or PipelineConfig()

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg

    def normalize(self, bitmap: ImageBitmap) -> NormalizedImage:
        validate_bitmap(bitmap)
        target = self.cfg.target_image_size
        uri = bitmap.data if isinstance(bitmap.data, str) and is_file_reference(bitmap.data) else None

        encoded: bytes | None = None
        try:
            encoded = resolve_encoded_bytes(bitmap)
            pixels = decode_pixels(encoded, orientation_corrected=bitmap.orientation_corrected)
        except ImageDecodeError as exc:
            logger.warning("Image decode failed, using placeholder tensor: %s", exc)
            return NormalizedImage(
                tensor=placeholder_tensor(target),
                width=target,
                height=target,
                original_width=bitmap.width or target,
                original_height=bitmap.height or target,
                preprocessing=Preprocessing(resized=False, color_normalized=False, target_size=target, placeholder=True),
                encoded_bytes=encoded,
                uri=uri,
                mime_type=bitmap.mime_type,
            )

        height, width = pixels.shape[:2]
        resized = resize_nearest(pixels, target, target)
        tensor = pixels_to_tensor(resized)
        del resized

        return NormalizedImage(
            tensor=tensor,
            width=target,
            height=target,
            original_width=width or bitmap.width,
            original_height=height or bitmap.height,
            preprocessing=Preprocessing(resized=True, color_normalized=True, target_size=target),
            raw_pixels=pixels,
            encoded_bytes=encoded,
            uri=uri,
            mime_type=bitmap.mime_type,
        )
