from __future__ import annotations

import gc
import time
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def cleanup_torch_mps() -> None:
    try:
        import torch

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            torch.mps.empty_cache()
    except Exception:
        pass
    gc.collect()
