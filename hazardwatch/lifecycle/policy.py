"""Submission time window and per-device rate limiting."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class TimeWindowPolicy:
    """
    Daylight reporting window.

    Evaluated against the device's local wall-clock time, so the hour seen
    here is the one the reporter is standing in.
    """

    def __init__(self, open_hour: int = 6, close_hour: int = 18):
        self.open_hour = open_hour
        self.close_hour = close_hour

    def is_submission_window_open(self, now: datetime) -> bool:
        """True iff ``open_hour <= now.hour < close_hour``."""
        return self.open_hour <= now.hour < self.close_hour

    def describe(self) -> str:
        return (
            f"Reports are only accepted between {self.open_hour:02d}:00 and "
            f"{self.close_hour:02d}:00 local time for better visibility."
        )


class RateLimiter(ABC):
    """Decides whether a caller may make another submission."""

    @abstractmethod
    def allow(self, key: str, now: Optional[float] = None) -> bool:
        """
        Record an attempt by ``key`` and say whether it is allowed.

        Args:
            key: Caller identity, usually the device id
            now: Monotonic timestamp in seconds; defaults to time.monotonic()
        """


class UnlimitedRateLimiter(RateLimiter):
    def allow(self, key: str, now: Optional[float] = None) -> bool:
        return True


@dataclass
class _Window:
    started_at: float
    count: int


class FixedWindowRateLimiter(RateLimiter):
    """
    At most ``max_requests`` per key in each ``window_seconds`` window.

    A key's window starts with its first request and resets once it has
    fully elapsed. Expired windows are swept at most once per window
    length, so only keys seen in roughly the last two windows are held.
    """

    def __init__(self, window_seconds: float = 15 * 60, max_requests: int = 100):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._windows: Dict[str, _Window] = {}
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        with self._lock:
            if self._last_sweep is None:
                self._last_sweep = now
            elif now - self._last_sweep > self.window_seconds:
                self._drop_expired(now)

            window = self._windows.get(key)
            if window is None or now - window.started_at > self.window_seconds:
                self._windows[key] = _Window(started_at=now, count=1)
                return True

            window.count += 1
            if window.count > self.max_requests:
                logger.warning(f"Rate limit exceeded for {key}: {window.count} requests in window")
                return False
            return True

    def prune(self, now: Optional[float] = None) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = time.monotonic() if now is None else now
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: float) -> int:
        expired = [
            key for key, window in self._windows.items()
            if now - window.started_at > self.window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Dropped {len(expired)} expired rate limit windows")
        return len(expired)
