"""Pixel <-> image-relative box conversion shared by every adapter."""

from __future__ import annotations

from typing import Sequence

from .models import BoundingBox
from .utils import clamp01


FULL_FRAME = BoundingBox(x=0.0, y=0.0, width=1.0, height=1.0)


def pixel_box_to_normalized(box: Sequence[float], frame_width: int, frame_height: int) -> BoundingBox:
    """Convert an ``(x, y, w, h)`` pixel box to [0, 1] coordinates of its frame.

    Boxes spilling past the frame are clipped so that ``x + width`` and
    ``y + height`` never exceed 1.
    """
    if frame_width <= 0 or frame_height <= 0:
        raise ValueError(f"Invalid frame size: {frame_width}x{frame_height}")
    x, y, w, h = (float(v) for v in box[:4])
    nx = clamp01(x / frame_width)
    ny = clamp01(y / frame_height)
    nw = min(clamp01(w / frame_width), 1.0 - nx)
    nh = min(clamp01(h / frame_height), 1.0 - ny)
    return BoundingBox(x=nx, y=ny, width=nw, height=nh)


def normalized_box_to_pixels(box: BoundingBox, frame_width: int, frame_height: int) -> tuple[float, float, float, float]:
    return (
        round(box.x * frame_width, 2),
        round(box.y * frame_height, 2),
        round(box.width * frame_width, 2),
        round(box.height * frame_height, 2),
    )


def box_area(box: BoundingBox) -> float:
    return box.width * box.height
