"""Millisecond clock sources used by the timing engine."""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Supplies milliseconds since an arbitrary monotonic epoch."""
    def now_ms(self) -> int:
        ...


class MonotonicClock:
    """Clock backed by `time.monotonic_ns`, immune to wall-clock adjustments."""

    def now_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000


class ManualClock:
    """Clock that only moves when told to; used by tests and replays."""

    def __init__(self, start_ms: int = 0):
        self._now_ms = int(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now_ms

    def advance(self, milliseconds: int) -> int:
        with self._lock:
            self._now_ms += int(milliseconds)
            return self._now_ms

    def advance_seconds(self, seconds: float) -> int:
        return self.advance(int(round(seconds * 1000)))

    def set(self, now_ms: int) -> None:
        # Allows moving backwards on purpose to simulate clock anomalies.
        with self._lock:
            self._now_ms = int(now_ms)
