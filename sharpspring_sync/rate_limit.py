"""Utilities for spacing out calls to the Sharpspring REST API."""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional


@dataclass
class DelayPolicy:
    """Fixed pause applied after an operation, e.g. between update batches."""

    delay_seconds: float = 0.0

    def pause(self) -> None:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)


class RateLimiter:
    """Token bucket style rate limiter enforcing minimum interval between calls."""

    def __init__(self, calls_per_minute: Optional[float]) -> None:
        self._interval = 60.0 / float(calls_per_minute) if calls_per_minute else 0.0
        self._lock = threading.Lock()
        self._next_available = 0.0

    @property
    def interval(self) -> float:
        return self._interval

    def acquire(self) -> None:
        if self._interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            if now < self._next_available:
                time.sleep(self._next_available - now)
                now = time.monotonic()
            self._next_available = now + self._interval


__all__ = ["DelayPolicy", "RateLimiter"]
