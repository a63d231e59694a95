"""In-memory fixed-window rate limiting per client."""

import threading
import time
from typing import Callable


class RateLimiter:
    """Allow max_requests per window_seconds for each client key."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        """Drop every client whose window has ended; runs at most once per window."""
        if now < self._next_sweep:
            return
        self._windows = {
            key: window for key, window in self._windows.items() if window[1] > now
        }
        self._next_sweep = now + self.window_seconds

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                self._windows[key] = (1, now + self.window_seconds)
                return True
            if count >= self.max_requests:
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def __len__(self) -> int:
        return len(self._windows)
