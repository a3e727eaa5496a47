# turbo_upload/speed.py
"""
Smoothed throughput estimation from cumulative byte counts.
"""

import time
from typing import Callable, Optional

DEFAULT_MIN_INTERVAL = 0.5  # seconds


class SpeedEstimator:
    """Turns a stream of (cumulative_bytes, time) samples into bytes/second.

    Samples arriving less than `min_interval` after the last reference are
    ignored and the previous speed is reported again, so the estimate always
    covers a trailing window of at least `min_interval` seconds and is
    recomputed at a bounded rate. The first sample only sets the reference
    and reports 0.
    """

    def __init__(self, min_interval: float = DEFAULT_MIN_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self.clock = clock
        self.reset()

    def reset(self):
        self.last_bytes: Optional[int] = None
        self.last_time: Optional[float] = None
        self.speed = 0.0

    def sample(self, cumulative_bytes: int, now: Optional[float] = None) -> float:
        if now is None:
            now = self.clock()

        if self.last_time is None:
            self.last_bytes = cumulative_bytes
            self.last_time = now
            return self.speed

        elapsed = now - self.last_time
        if elapsed < self.min_interval:
            return self.speed

        self.speed = max(0.0, (cumulative_bytes - self.last_bytes) / elapsed)
        self.last_bytes = cumulative_bytes
        self.last_time = now
        return self.speed
