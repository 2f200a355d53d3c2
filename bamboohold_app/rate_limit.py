"""
Rate limiting for the BambooHold service.

Sliding one-minute windows keyed by "<endpoint>:<principal>" for signed
requests and by the requesting user for oracle calls.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """Per-key sliding window limiter, safe to share between worker threads."""

    def __init__(self, rpm: int, window_seconds: int = 60):
        self.limit = max(1, rpm)
        self.window = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, key: str, now: Optional[float] = None) -> RateLimitResult:
        """Count a hit against `key` unless its window is already full."""
        now = time.time() if now is None else now
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - self.window:
                hits.popleft()
            if len(hits) >= self.limit:
                return RateLimitResult(False, 0, retry_after=hits[0] + self.window - now)
            hits.append(now)
            return RateLimitResult(True, self.limit - len(hits))

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)
