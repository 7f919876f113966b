import threading
import time
from typing import Callable

PRUNE_THRESHOLD = 10_000


class RateLimiter:
    """Fixed-window request counter keyed by client address (per process)."""

    def __init__(self, max_requests: int, window_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[float, int]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            if len(self._windows) > PRUNE_THRESHOLD:
                self._prune(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.max_requests:
                return False
            self._windows[key] = (started, count + 1)
            return True

    def _prune(self, now: float) -> None:
        expired = [key for key, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]
