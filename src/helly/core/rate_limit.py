"""Per-key sliding-window rate limiter."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Hashable

DEFAULT_WINDOW_SEC = 30.0
DEFAULT_MAX_PER_WINDOW = 10


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_sec: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "retry_after_sec": self.retry_after_sec}


class SlidingWindowRateLimiter:
    """Allows at most `max_per_window` hits per key in any `window_sec` span."""

    def __init__(
        self,
        *,
        window_sec: float = DEFAULT_WINDOW_SEC,
        max_per_window: int = DEFAULT_MAX_PER_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_sec: float | None = None,
    ) -> None:
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        if max_per_window <= 0:
            raise ValueError("max_per_window must be > 0")
        self._window_sec = float(window_sec)
        self._max_per_window = int(max_per_window)
        self._clock = clock
        self._sweep_interval_sec = float(sweep_interval_sec) if sweep_interval_sec else self._window_sec
        self._last_sweep_at = clock()
        self._hits: dict[Hashable, deque[float]] = {}
        self._lock = Lock()

    def _prune(self, bucket: deque[float], now: float) -> None:
        while bucket and now - bucket[0] >= self._window_sec:
            bucket.popleft()

    def _sweep_locked(self, now: float) -> int:
        removed = 0
        for key in list(self._hits):
            bucket = self._hits[key]
            self._prune(bucket, now)
            if not bucket:
                del self._hits[key]
                removed += 1
        self._last_sweep_at = now
        return removed

    def check_and_consume(self, key: Hashable) -> RateLimitDecision:
        """Count one hit for `key`; idle keys are swept at most once per sweep interval."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep_at >= self._sweep_interval_sec:
                self._sweep_locked(now)
            bucket = self._hits.setdefault(key, deque())
            self._prune(bucket, now)
            if len(bucket) >= self._max_per_window:
                wait = max(1.0, self._window_sec - (now - bucket[0]))
                return RateLimitDecision(allowed=False, retry_after_sec=int(math.ceil(wait)))
            bucket.append(now)
            return RateLimitDecision(allowed=True)

    def reset(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def sweep(self) -> int:
        """Drop keys whose window has fully expired; returns the number removed."""
        now = self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)
