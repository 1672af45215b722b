"""In-memory per-client, per-minute request limiter."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from time import time as now_time
from typing import Callable


@dataclass
class RateLimiter:
    limit_per_min: int
    time_fn: Callable[[], float] = now_time
    buckets: dict[str, tuple[int, int]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def allow(self, key: str) -> bool:
        """Count one request for `key`; False once the current minute is used up."""
        minute = int(self.time_fn()) // 60
        with self._lock:
            count, bucket = self.buckets.get(key, (0, minute))
            if bucket != minute:
                count, bucket = 0, minute
            if count >= self.limit_per_min:
                self.buckets[key] = (count, bucket)
                return False
            self.buckets[key] = (count + 1, bucket)
            return True
