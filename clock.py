#!/usr/bin/env python3
"""
Clock source for DownOnly
Wall-clock time drives schedule and date rollover, monotonic time drives throttling
"""

import time
from datetime import datetime


class SystemClock:
    """Real time provider passed to every time-dependent component"""

    def now(self) -> datetime:
        """Local wall-clock time (schedule windows and calendar dates are local)"""
        return datetime.now()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
