from __future__ import annotations

import time
from collections import deque
from typing import Deque


class TickMeter:
    """Rolling tick rate and observer latency of the comparison loop."""

    def __init__(self, window: int = 30) -> None:
        self.window = max(1, window)
        self.intervals: Deque[float] = deque(maxlen=self.window)
        self.latencies: Deque[float] = deque(maxlen=self.window)
        self.last_time = time.perf_counter()

    def tick(self) -> float:
        now = time.perf_counter()
        delta = now - self.last_time
        self.last_time = now
        self.intervals.append(delta)
        return 0.0 if delta == 0 else 1.0 / delta

    def observe_latency(self, seconds: float) -> None:
        self.latencies.append(max(0.0, seconds))

    def get_rate(self) -> float:
        total = sum(self.intervals)
        if not self.intervals or total == 0:
            return 0.0
        return float(len(self.intervals) / total)

    def get_latency_ms(self) -> float:
        if not self.latencies:
            return 0.0
        return float(sum(self.latencies) / len(self.latencies) * 1000.0)
