"""Sliding-window request budget shared by spreadsheet transports."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` acquisitions per rolling ``window_seconds``.

    :meth:`acquire` blocks until a slot is free; it never raises because the
    budget is exhausted.  The limiter is safe to share between threads.
    """

    def __init__(
        self,
        max_requests: int = 50,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._calls: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def acquire(self) -> float:
        """Reserve one request slot and return the number of seconds waited."""

        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._calls) < self.max_requests:
                    self._calls.append(now)
                    return waited
                delay = self.window_seconds - (now - self._calls[0])
            if delay > 0:
                logger.debug("Rate limit reached; waiting %.2fs", delay)
                self._sleep(delay)
                waited += delay

    @property
    def in_window(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._calls)


__all__ = ["SlidingWindowRateLimiter"]
