"""
Shared pytest fixtures for DownOnly tests
"""

import os
import sys
import threading
import time
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class FakeClock:
    """
    Controllable clock

    real_time=False: monotonic time only moves through sleep()/advance(), so
    throttle delays are observable without waiting.
    real_time=True: monotonic time follows the real clock plus any advance,
    so waits that block on threading primitives still expire.
    """

    def __init__(self, start: datetime, real_time: bool = False):
        self._lock = threading.Lock()
        self._wall = start
        self._advanced = 0.0
        self._real_time = real_time
        self._mono_base = time.monotonic()
        self.sleeps = []

    def now(self) -> datetime:
        with self._lock:
            return self._wall + timedelta(seconds=self._advanced)

    def monotonic(self) -> float:
        with self._lock:
            if self._real_time:
                return time.monotonic() + self._advanced
            return self._mono_base + self._advanced

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._advanced += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._advanced += seconds

    def set_now(self, when: datetime) -> None:
        with self._lock:
            self._wall = when - timedelta(seconds=self._advanced)


@pytest.fixture
def fake_clock():
    return FakeClock(datetime(2024, 6, 15, 12, 0, 0))


@pytest.fixture
def clock_factory():
    return FakeClock
