"""
ratelimit — Fixed-delay throttle for outbound crawl requests.

Usage:
    throttle = RequestThrottle(delay=0.8)  # at least 0.8 s between requests
    throttle.wait()  # blocks until the delay since the last request has passed
    session.get(url)
"""
from __future__ import annotations
import threading
import time
from typing import Callable


class RequestThrottle:
    """Courtesy delay between consecutive requests (thread-safe)."""

    def __init__(
        self,
        delay: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.delay = max(0.0, delay)
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = threading.Lock()

    def wait(self):
        """Block until `delay` seconds have passed since the previous call."""
        with self._lock:
            now = self._clock()
            if self._last is not None:
                remaining = self._last + self.delay - now
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last = now

    def reset(self):
        with self._lock:
            self._last = None
