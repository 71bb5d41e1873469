#!/usr/bin/env python3
"""
DownOnly Service
Loads persisted state once, wires the shared runtime state into the worker,
speed tracker, auto-saver and control server, and flushes on shutdown.
"""

import logging
import os
import random
from typing import Optional

from clock import SystemClock
from control_api import ControlAPI
from control_server import ControlServer
from download_worker import DownloadWorker, WorkerTimings
from runtime_state import RuntimeState
from speed_tracker import SpeedTracker
from state_persistence import StatePersistence, StatsAutoSaver, flush_runtime_state
from throttled_fetcher import RateLimitedFetcher

APP_VERSION = "1.0.0"

logger = logging.getLogger("downonly.service")


class DownOnlyService:
    """Owns every background thread of the agent"""

    def __init__(self, data_dir: str = "data", host: str = "0.0.0.0", port: int = 9999,
                 clock=None, rng: Optional[random.Random] = None,
                 timings: Optional[WorkerTimings] = None,
                 autosave_interval_s: float = 60.0, tracker_interval_s: float = 1.0,
                 serve_http: bool = True):
        self.data_dir = data_dir
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.persistence = StatePersistence(data_dir)

        os.makedirs(data_dir, exist_ok=True)

        # The only load of persisted records for the life of the process
        self.state = RuntimeState(
            config=self.persistence.load_config(),
            stats=self.persistence.load_stats(self.clock.now()),
            activity_log=self.persistence.load_logs(),
            clock=self.clock,
        )

        self.api = ControlAPI(self.state, self.persistence, self.clock)
        self.fetcher = RateLimitedFetcher(self.state, self.clock, rng=self.rng)
        self.worker = DownloadWorker(self.state, self.clock, fetcher=self.fetcher,
                                     rng=self.rng, timings=timings)
        self.tracker = SpeedTracker(self.state, interval_s=tracker_interval_s)
        self.autosaver = StatsAutoSaver(self.state, self.persistence,
                                        interval_s=autosave_interval_s)
        self.server = ControlServer(self.api, host=host, port=port) if serve_http else None
        self._shut_down = False

    def start(self) -> None:
        self.state.append_log("DownOnly initialized")
        flush_runtime_state(self.state, self.persistence)

        self.worker.start()
        self.tracker.start()
        self.autosaver.start()
        if self.server:
            self.server.start()
        logger.info(f"SERVICE | STARTED | version={APP_VERSION} | data_dir={self.data_dir}")

    def shutdown(self) -> bool:
        """Flush stats and logs synchronously, then stop threads. Idempotent."""
        if self._shut_down:
            return True
        self._shut_down = True

        # No periodic save may overlap the final flush
        self.autosaver.stop()

        self.state.append_log("shutdown requested, saving state")
        ok = flush_runtime_state(self.state, self.persistence)
        logger.info(f"SERVICE | FLUSHED | ok={ok}")

        # In-flight fetches are not awaited; the worker thread is a daemon
        self.worker.stop()
        self.tracker.stop()
        if self.server:
            self.server.stop()
        logger.info("SERVICE | STOPPED")
        return ok
