#!/usr/bin/env python3
"""
Speed Tracker for DownOnly
Once per second: date rollover check, drain the per-second byte counter,
push an Mbps sample into the 30-slot history ring
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger("downonly.tracker")


def bytes_to_mbps(count: int) -> float:
    return count * 8 / 1_000_000


class SpeedTracker:
    """Fixed-interval throughput sampler"""

    def __init__(self, state, interval_s: float = 1.0):
        self.state = state
        self.interval_s = interval_s
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    def tick(self) -> float:
        return self.state.sample_throughput(bytes_to_mbps)

    def start(self) -> None:
        if self.thread is not None and self.thread.is_alive():
            return
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._loop, name="speed-tracker", daemon=True)
        self.thread.start()

    def stop(self) -> None:
        self.stop_event.set()
        if self.thread:
            self.thread.join(timeout=2.0)

    def _loop(self) -> None:
        while not self.stop_event.wait(self.interval_s):
            try:
                self.tick()
            except Exception:
                logger.exception("TRACKER | TICK_ERROR")
