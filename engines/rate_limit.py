"""Bounded per-user request counters for the tutor endpoint."""

import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Thread-safe fixed-window counter store with a size limit.

    Each key may make ``limit`` requests per ``window_seconds``. At most
    ``capacity`` keys are tracked; expired windows are dropped first, then
    the least recently used key is evicted.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        capacity: int = 1024,
        clock: Optional[Callable[[], float]] = None,
    ):
        if limit < 1 or capacity < 1 or window_seconds <= 0:
            raise ValueError("limit, capacity and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.capacity = capacity
        self._clock = clock or time.monotonic
        self._windows: "OrderedDict[str, _Window]" = OrderedDict()
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Count a request for ``key`` and report whether it is within the limit."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[key] = window
            self._windows.move_to_end(key)
            window.count += 1
            self._evict(now)
            return window.count <= self.limit

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                return self.limit
            return max(0, self.limit - window.count)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)

    def _evict(self, now: float) -> None:
        if len(self._windows) <= self.capacity:
            return
        for stale in [k for k, w in self._windows.items() if now > w.reset_at]:
            del self._windows[stale]
        while len(self._windows) > self.capacity:
            self._windows.popitem(last=False)
