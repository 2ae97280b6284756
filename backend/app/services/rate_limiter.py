"""Simple in-memory rate limiting utilities."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional


@dataclass
class _Bucket:
    timestamps: Deque[float] = field(default_factory=deque)


class InMemoryRateLimiter:
    """Sliding-window request counter suitable for single-node deployments."""

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0) -> None:
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()
        self._longest_window = 0

    def _prune(self, key: str, cutoff: float) -> Optional[_Bucket]:
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        while bucket.timestamps and bucket.timestamps[0] <= cutoff:
            bucket.timestamps.popleft()
        if not bucket.timestamps:
            del self._buckets[key]
            return None
        return bucket

    def _sweep(self, now: float, window_seconds: int) -> None:
        # Drops keys idle for longer than the longest window seen
        self._longest_window = max(self._longest_window, window_seconds)
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        cutoff = now - self._longest_window
        for key in [k for k, b in self._buckets.items() if b.timestamps[-1] <= cutoff]:
            del self._buckets[key]

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            self._sweep(now, window_seconds)
            bucket = self._prune(key, now - window_seconds)
            if bucket is None:
                if limit <= 0:
                    return False
                bucket = self._buckets[key] = _Bucket()
            elif len(bucket.timestamps) >= limit:
                return False
            bucket.timestamps.append(now)
            return True

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Seconds until the oldest request in the window ages out."""
        now = self._clock()
        with self._lock:
            bucket = self._prune(key, now - window_seconds)
            if bucket is None:
                return 0
            return max(1, math.ceil(bucket.timestamps[0] + window_seconds - now))

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


rate_limiter = InMemoryRateLimiter()
