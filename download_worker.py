#!/usr/bin/env python3
"""
Download Worker for DownOnly
Single control loop: evaluate policy, pick a target, run a throttled fetch,
cool down, repeat. Every wait is cancellable through RuntimeState change
notifications and re-checks operator intent at least once per second.
"""

import logging
import random
import threading
from dataclasses import dataclass
from typing import Optional

from runtime_state import WorkerPhase
from throttled_fetcher import FetchResult, RateLimitedFetcher

logger = logging.getLogger("downonly.worker")


@dataclass
class WorkerTimings:
    """Idle intervals in seconds"""
    disabled_poll_s: float = 1.0
    out_of_schedule_wait_s: float = 30.0
    quota_wait_s: float = 60.0
    cooldown_min_s: int = 600
    cooldown_max_s: int = 1200  # exclusive
    recheck_s: float = 1.0


def format_bytes(count: int) -> str:
    if count >= 1e12:
        return f"{count / 1e12:.2f} TB"
    if count >= 1e9:
        return f"{count / 1e9:.2f} GB"
    if count >= 1e6:
        return f"{count / 1e6:.2f} MB"
    return f"{count} B"


def truncate_url(url: str, limit: int = 60) -> str:
    if len(url) > limit:
        return url[:limit - 3] + "..."
    return url


class DownloadWorker:
    """Worker state machine driving RateLimitedFetcher from RuntimeState"""

    def __init__(self, state, clock, fetcher: Optional[RateLimitedFetcher] = None,
                 rng: Optional[random.Random] = None,
                 timings: Optional[WorkerTimings] = None):
        self.state = state
        self.clock = clock
        self.rng = rng or random.Random()
        self.fetcher = fetcher or RateLimitedFetcher(state, clock, rng=self.rng)
        self.timings = timings or WorkerTimings()
        self.stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    # ---- lifecycle ----

    def start(self) -> None:
        if self.thread is not None and self.thread.is_alive():
            return
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._run_loop, name="download-worker", daemon=True)
        self.thread.start()
        logger.info("WORKER | STARTED")

    def stop(self, timeout: float = 0.0) -> None:
        """Request stop. An in-flight fetch is not awaited unless timeout > 0."""
        self.stop_event.set()
        self.state.notify_change()
        if self.thread and timeout > 0:
            self.thread.join(timeout=timeout)

    def _run_loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                # A broken cycle must not kill the agent
                logger.exception("WORKER | CYCLE_ERROR")
                self.stop_event.wait(self.timings.disabled_poll_s)
        logger.info("WORKER | STOPPED")

    # ---- waiting ----

    def _idle(self, seconds: float, while_enabled: bool = True) -> None:
        """Sleep up to `seconds`, leaving early on stop or when operator intent flips"""
        deadline = self.clock.monotonic() + seconds
        while not self.stop_event.is_set():
            if self.state.is_enabled() != while_enabled:
                return
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                return
            self.state.wait_for_change(min(self.timings.recheck_s, remaining))

    def _activity(self, message: str) -> None:
        self.state.append_log(message)
        logger.info(f"WORKER | {message}")

    # ---- state machine ----

    def run_once(self) -> WorkerPhase:
        """Run one cycle and return the last phase it reached"""
        if not self.state.is_enabled():
            if self.state.get_phase() != WorkerPhase.DISABLED:
                self.state.set_phase(WorkerPhase.DISABLED)
            self._idle(self.timings.disabled_poll_s, while_enabled=False)
            return WorkerPhase.DISABLED

        snapshot = self.state.begin_cycle()
        decision = snapshot.decision

        if decision.code == "DENY_OUT_OF_SCHEDULE":
            logger.debug(f"WORKER | POLICY_DENY | code={decision.code} | reason={decision.reason}")
            self._idle(self.timings.out_of_schedule_wait_s)
            return WorkerPhase.OUT_OF_SCHEDULE

        if decision.code == "DENY_QUOTA_REACHED":
            logger.debug(f"WORKER | POLICY_DENY | code={decision.code} | reason={decision.reason}")
            self._idle(self.timings.quota_wait_s)
            return WorkerPhase.QUOTA_REACHED

        if decision.code == "DENY_NO_TARGETS":
            logger.warning("WORKER | NO_TARGETS | action=disable")
            self.state.force_disable(WorkerPhase.NO_TARGETS,
                                     "no download targets configured, service stopped")
            return WorkerPhase.NO_TARGETS

        # Lock already released by begin_cycle; nothing below holds it across I/O
        if not self.state.set_phase(WorkerPhase.STARTING):
            return WorkerPhase.DISABLED
        url = self.rng.choice(snapshot.urls)

        if not self.state.set_phase(WorkerPhase.DOWNLOADING):
            return WorkerPhase.DISABLED
        self._activity(f"download started: {truncate_url(url)}")
        result = self.fetcher.fetch(url, snapshot.speed_limit_mbps, self._should_abort)
        self._report(result)

        if not self.state.is_enabled():
            return WorkerPhase.DISABLED
        if self.stop_event.is_set():
            return WorkerPhase.DOWNLOADING
        if self.state.quota_reached():
            # Next cycle records QUOTA_REACHED; no cooldown owed
            return WorkerPhase.EVALUATING

        cooldown = self.rng.randrange(self.timings.cooldown_min_s, self.timings.cooldown_max_s)
        self.state.set_phase(WorkerPhase.COOLDOWN)
        self._activity(f"cooling down for {cooldown} s")
        self._idle(cooldown)
        return WorkerPhase.COOLDOWN

    def _should_abort(self) -> bool:
        return self.stop_event.is_set() or self.state.should_abort_fetch()

    def _report(self, result: FetchResult) -> None:
        if result.error:
            self._activity(f"download failed: {result.error} "
                           f"(transferred {format_bytes(result.bytes_transferred)})")
        elif result.aborted:
            self._activity(f"download interrupted: {format_bytes(result.bytes_transferred)}")
        else:
            self._activity(f"download finished: {format_bytes(result.bytes_transferred)}")
