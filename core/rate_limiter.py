"""
Token bucket rate limiter.

Used by the rendition pipeline to cap job starts per second so a burst of
rendition requests cannot flood the renderer and storage backends.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class TokenBucket:
    """
    Thread-safe token bucket.

    Tokens refill continuously at `rate_per_sec` up to `burst`. Callers either
    block in take() or poll with try_take() from a scheduler loop.
    """

    def __init__(
        self,
        rate_per_sec: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.rate = max(0.01, float(rate_per_sec))
        self.capacity = max(1, int(burst))
        self._clock = clock
        self._tokens = float(self.capacity)
        self._lock = threading.Lock()
        self._last = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        self._last = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    def try_take(self, n: float = 1.0) -> bool:
        """Take `n` tokens if available right now. Never blocks."""
        with self._lock:
            self._refill()
            if self._tokens >= n:
                self._tokens -= n
                return True
            return False

    def take(self, n: float = 1.0) -> None:
        """Block until `n` tokens are available, then take them."""
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= n:
                    self._tokens -= n
                    return
                need = (n - self._tokens) / self.rate
            time.sleep(min(0.25, max(0.01, need)))

    @property
    def available(self) -> float:
        """Current token count (after refill)."""
        with self._lock:
            self._refill()
            return self._tokens
