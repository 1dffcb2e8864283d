"""In-memory fixed-window throttle for login attempts."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Callable


class LoginThrottle:
    """Allow at most `max_attempts` per key inside a sliding window."""

    def __init__(self, max_attempts: int, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, key: str) -> tuple[bool, int]:
        """Record an attempt; return `(allowed, retry_after_seconds)`."""
        if self.max_attempts <= 0:
            return True, 0
        now = self._clock()
        with self._lock:
            q = self._hits[key]
            cutoff = now - self.window_seconds
            while q and q[0] <= cutoff:
                q.popleft()
            if len(q) >= self.max_attempts:
                return False, max(1, int(self.window_seconds - (now - q[0])))
            q.append(now)
        return True, 0

    def reset(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)
