from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from simops.core.errors import RateLimitExceeded


logger = logging.getLogger(__name__)


@dataclass
class _Window:
    remaining: int
    reset_at_ms: float


class FixedWindowRateLimiter:
    """Process-local fixed-window counter keyed by an opaque string.

    Not shared across processes; a single instance deployment is assumed.
    """

    def __init__(self, time_source: Callable[[], float] | None = None) -> None:
        self._time = time_source or time.monotonic
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _now_ms(self) -> float:
        return self._time() * 1000.0

    def enforce(self, key: str, limit: int, window_ms: int) -> int:
        # Returns the tokens left in the current window.
        now_ms = self._now_ms()
        with self._lock:
            window = self._windows.get(key)
            if window is None or window.reset_at_ms <= now_ms:
                self._windows[key] = _Window(remaining=limit - 1, reset_at_ms=now_ms + window_ms)
                return limit - 1
            if window.remaining <= 0:
                retry_after_ms = int(math.ceil(window.reset_at_ms - now_ms))
                logger.warning("rate_limit_exceeded key=%s retry_after_ms=%s", key, retry_after_ms)
                raise RateLimitExceeded(key, retry_after_ms=retry_after_ms)
            window.remaining -= 1
            return window.remaining

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)


_rate_limiter: FixedWindowRateLimiter | None = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = FixedWindowRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    global _rate_limiter
    _rate_limiter = None
