"""
Inter-request pacing against the scraped source.
"""

import time
import threading
import logging

logger = logging.getLogger(__name__)


class Pacer:
    """
    Enforces a minimum delay between consecutive requests to one source.

    wait() blocks until at least `delay` seconds have passed since the
    previous wait() returned. Safe to share between worker threads.
    """

    def __init__(self, delay: float, sleep=time.sleep, clock=time.monotonic):
        self.delay = delay
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._last = None

    def wait(self):
        with self._lock:
            now = self._clock()
            if self._last is not None:
                remaining = self.delay - (now - self._last)
                if remaining > 0:
                    logger.debug(f"Pacing: waiting {remaining:.2f}s")
                    self._sleep(remaining)
                    now = self._clock()
            self._last = now

    def reset(self):
        with self._lock:
            self._last = None
