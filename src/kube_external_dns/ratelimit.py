"""Token bucket used to keep adapters inside their backend's published quota."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Thread-safe token bucket.

    ``rate`` tokens are added per second up to ``capacity``. The bucket starts
    full, so up to ``capacity`` calls go through immediately; later calls block
    in :meth:`wait` until enough tokens have accumulated. Nothing is ever
    rejected.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = float(rate)
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._last = now
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)

    def wait(self, tokens: int = 1) -> float:
        """Block until ``tokens`` are taken. Returns the total time slept."""
        if tokens > self.capacity:
            raise ValueError(f"cannot take {tokens} tokens from a bucket of {self.capacity}")

        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= tokens:
                    self._tokens -= tokens
                    return waited
                delay = (tokens - self._tokens) / self.rate

            if waited == 0.0:
                logger.debug(f"Rate limit reached, waiting {delay:.2f}s")
            self._sleep(delay)
            waited += delay
