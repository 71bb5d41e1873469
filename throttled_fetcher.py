#!/usr/bin/env python3
"""
Rate-Limited Fetcher for DownOnly
Streams one remote resource, counts and discards the payload, and paces the
transfer to a target bitrate with a sliding one-second accounting window.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional

import requests

logger = logging.getLogger("downonly.fetcher")

CHUNK_SIZE = 32 * 1024
FETCH_TIMEOUT_S = 60 * 60
CONNECT_TIMEOUT_S = 30
READ_TIMEOUT_S = 300

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 Chrome/122.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/122.0.0.0 Safari/537.36",
]


@dataclass
class FetchResult:
    """Outcome of one fetch attempt. error is None on clean completion or abort."""
    bytes_transferred: int = 0
    error: Optional[str] = None
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SlidingWindowThrottle:
    """
    Paces a byte stream to speed_limit_mbps

    After each chunk the bytes read since window_start are compared with the
    time they should have taken at the target rate; the difference is the
    delay. The window restarts once a full second has elapsed.
    """

    def __init__(self, speed_limit_mbps: int, clock):
        self.clock = clock
        self.bytes_per_second = speed_limit_mbps * 1_000_000 / 8
        self.window_start = clock.monotonic()
        self.window_bytes = 0

    def delay_for(self, chunk_len: int) -> float:
        """Account a chunk and return how long to block before the next read"""
        self.window_bytes += chunk_len
        expected = self.window_bytes / self.bytes_per_second
        elapsed = self.clock.monotonic() - self.window_start
        if expected > elapsed:
            return expected - elapsed
        return 0.0

    def roll_window(self) -> None:
        now = self.clock.monotonic()
        if now - self.window_start >= 1.0:
            self.window_start = now
            self.window_bytes = 0


class RateLimitedFetcher:
    """Single-connection throttled downloader writing byte counts into RuntimeState"""

    def __init__(self, state, clock, rng: Optional[random.Random] = None,
                 session: Optional[requests.Session] = None,
                 chunk_size: int = CHUNK_SIZE, fetch_timeout_s: float = FETCH_TIMEOUT_S):
        self.state = state
        self.clock = clock
        self.rng = rng or random.Random()
        self.session = session or requests.Session()
        self.chunk_size = chunk_size
        self.fetch_timeout_s = fetch_timeout_s

    def _headers(self):
        return {
            "User-Agent": self.rng.choice(USER_AGENTS),
            "Cache-Control": "no-cache",
        }

    def fetch(self, url: str, speed_limit_mbps: int,
              should_abort: Callable[[], bool]) -> FetchResult:
        """Download url, discarding the body. Never raises for transport errors."""
        if speed_limit_mbps <= 0:
            return FetchResult(error=f"invalid speed limit: {speed_limit_mbps}")

        started = self.clock.monotonic()
        try:
            response = self.session.get(
                url, headers=self._headers(), stream=True, allow_redirects=True,
                timeout=(CONNECT_TIMEOUT_S, READ_TIMEOUT_S),
            )
        except requests.RequestException as e:
            logger.warning(f"FETCH | CONNECT_FAIL | url={url} | error={e}")
            return FetchResult(error=str(e))

        with response:
            if not 200 <= response.status_code < 300:
                logger.warning(f"FETCH | HTTP_ERROR | url={url} | status={response.status_code}")
                return FetchResult(error=f"HTTP {response.status_code}")

            logger.info(f"FETCH | STREAM_OPEN | url={url} | limit_mbps={speed_limit_mbps}")
            return self._stream(response, speed_limit_mbps, should_abort, started)

    def _stream(self, response, speed_limit_mbps: int,
                should_abort: Callable[[], bool], started: float) -> FetchResult:
        throttle = SlidingWindowThrottle(speed_limit_mbps, self.clock)
        chunks = response.iter_content(chunk_size=self.chunk_size)
        total = 0

        while True:
            if should_abort():
                logger.info(f"FETCH | ABORTED | bytes={total}")
                return FetchResult(bytes_transferred=total, aborted=True)

            if self.clock.monotonic() - started > self.fetch_timeout_s:
                logger.warning(f"FETCH | TIMEOUT | bytes={total} | limit_s={self.fetch_timeout_s}")
                return FetchResult(bytes_transferred=total,
                                   error=f"fetch exceeded {self.fetch_timeout_s}s")

            try:
                chunk = next(chunks)
            except StopIteration:
                logger.info(f"FETCH | COMPLETE | bytes={total}")
                return FetchResult(bytes_transferred=total)
            except requests.RequestException as e:
                logger.warning(f"FETCH | READ_FAIL | bytes={total} | error={e}")
                return FetchResult(bytes_transferred=total, error=str(e))

            if not chunk:
                continue

            total += len(chunk)
            # Counters reflect bytes received, before the pacing delay
            self.state.record_bytes(len(chunk))

            delay = throttle.delay_for(len(chunk))
            if delay > 0:
                self.clock.sleep(delay)
            throttle.roll_window()
