from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Generic, TypeVar

from .utils import cleanup_torch_mps


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LazyModel(Generic[T]):
    """Load-once holder for an external model.

    The first ``get()`` calls ``loader``. A failed load is remembered and every
    later ``get()`` returns None without calling the loader again; with
    ``retries > 0`` the loader is attempted that many extra times, sleeping
    ``backoff_s * 2**attempt`` between attempts, before the failure sticks.
    """

    def __init__(
        self,
        name: str,
        loader: Callable[[], T] | None,
        *,
        retries: int = 0,
        backoff_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = name
        self.loader = loader
        self.retries = max(0, int(retries))
        self.backoff_s = max(0.0, float(backoff_s))
        self._sleep = sleep
        self._instance: T | None = None
        self._failed = False
        self._error: str | None = None
        self._lock = threading.Lock()

    def configure(self, *, retries: int, backoff_s: float) -> None:
        self.retries = max(0, int(retries))
        self.backoff_s = max(0.0, float(backoff_s))

    def reset(self) -> None:
        """Unload and forget a remembered failure so the next get() loads again."""
        self.unload()
        with self._lock:
            self._failed = False
            self._error = None

    @property
    def loaded(self) -> bool:
        return self._instance is not None

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def error(self) -> str | None:
        return self._error

    def get(self) -> T | None:
        if self._instance is not None:
            return self._instance
        if self._failed:
            return None
        with self._lock:
            if self._instance is not None:
                return self._instance
            if self._failed:
                return None
            if self.loader is None:
                self._fail("no provider configured")
                return None
            self._instance = self._load_with_retries()
            return self._instance

    def _load_with_retries(self) -> T | None:
        attempts = self.retries + 1
        for attempt in range(attempts):
            start = time.perf_counter()
            try:
                instance = self.loader()
                if instance is None:
                    raise RuntimeError("loader returned no model")
            except Exception as exc:
                logger.warning("[%s] load attempt %d/%d failed: %s", self.name, attempt + 1, attempts, exc)
                self._error = str(exc) or exc.__class__.__name__
                if attempt + 1 < attempts and self.backoff_s > 0:
                    self._sleep(self.backoff_s * (2**attempt))
                continue
            logger.info("[%s] loaded in %.0fms", self.name, (time.perf_counter() - start) * 1000)
            self._error = None
            return instance
        self._fail(self._error or "load failed")
        return None

    def _fail(self, message: str) -> None:
        self._failed = True
        self._error = message
        logger.warning("[%s] unavailable for the rest of this process: %s", self.name, message)

    def unload(self) -> None:
        with self._lock:
            instance = self._instance
            self._instance = None
        if instance is not None:
            closer: Any = getattr(instance, "unload", None) or getattr(instance, "close", None)
            if callable(closer):
                try:
                    closer()
                except Exception as exc:
                    logger.warning("[%s] unload failed: %s", self.name, exc)
            cleanup_torch_mps()
