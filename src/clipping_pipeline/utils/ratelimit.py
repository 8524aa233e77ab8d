from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable


class SlidingWindowLimiter:
    """
    At most `limit` acquisitions inside any trailing `window_s` seconds.

    The clock is injectable so the orchestrator's fake clock drives it in tests.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(limit) < 1:
            raise ValueError("limit must be >= 1")
        if float(window_s) <= 0:
            raise ValueError("window_s must be > 0")
        self.limit = int(limit)
        self.window_s = float(window_s)
        self._clock = clock
        self._hits: deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._hits and now - self._hits[0] >= self.window_s:
            self._hits.popleft()

    def allow(self, now: float | None = None) -> bool:
        """Record an acquisition if one is available."""
        t = self._clock() if now is None else float(now)
        with self._lock:
            self._evict(t)
            if len(self._hits) >= self.limit:
                return False
            self._hits.append(t)
            return True

    def retry_after(self, now: float | None = None) -> float:
        """Seconds until the next acquisition would be allowed (0 when free)."""
        t = self._clock() if now is None else float(now)
        with self._lock:
            self._evict(t)
            if len(self._hits) < self.limit:
                return 0.0
            return max(0.0, self._hits[0] + self.window_s - t)

