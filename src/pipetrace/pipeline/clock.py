"""Millisecond time sources."""

from __future__ import annotations

import threading
import time
from typing import Protocol


class TimeSource(Protocol):
    """Anything that can report the current time in integer milliseconds."""

    def now_ms(self) -> int:
        ...


class MonotonicClock:
    """Process-local monotonic clock."""

    def now_ms(self) -> int:
        return time.monotonic_ns() // 1_000_000


class VirtualClock:
    """Manually advanced clock for replays and tests."""

    def __init__(self, start_ms: int = 0) -> None:
        if start_ms < 0:
            raise ValueError(f"start_ms must be >= 0, got {start_ms}")
        self._now = int(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            return self._now

    def advance(self, delta_ms: int) -> int:
        if delta_ms < 0:
            raise ValueError(f"Virtual time cannot move backwards (delta={delta_ms})")
        with self._lock:
            self._now += int(delta_ms)
            return self._now

    def set(self, now_ms: int) -> int:
        """Move to `now_ms`; earlier values are ignored so time stays monotonic."""

        with self._lock:
            self._now = max(self._now, int(now_ms))
            return self._now
