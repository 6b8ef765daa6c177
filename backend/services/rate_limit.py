"""Oracle quota enforcement and cooperative cancellation for price backfill."""

import logging
import threading
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allows at most ``max_calls`` acquisitions per ``window_seconds``.

    ``acquire()`` sleeps until a slot frees up. Clock and sleep are
    injectable so tests run without waiting.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.max_calls = max_calls
        self.window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= self.window_seconds:
            self._calls.popleft()

    def acquire(self) -> float:
        """Take one slot, returning the seconds spent waiting for it."""
        waited = 0.0
        with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return waited
                delay = self.window_seconds - (now - self._calls[0])
                logger.debug("Rate limit reached, waiting %.2fs", delay)
                self._sleep(delay)
                waited += delay


class CancellationToken:
    """Set-once flag checked between units of long-running work."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
