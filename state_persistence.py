#!/usr/bin/env python3
"""
State Persistence for DownOnly
Three independent JSON records under the data directory:
  config.json - download policy
  stats.json  - per-day traffic archive and today's counter
  logs.json   - bounded activity log
Missing or unreadable records fall back to defaults, startup never fails.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Any, Dict

from runtime_state import ActivityLog, ConfigError, DownloadConfig, TrafficStats

logger = logging.getLogger("downonly.persistence")

CONFIG_FILE = "config.json"
STATS_FILE = "stats.json"
LOGS_FILE = "logs.json"


class PersistenceError(Exception):
    """Raised when persistence operations fail"""
    pass


class StatePersistence:
    """Load/save gateway for the three durable records"""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = data_dir
        # Serializes writers: HTTP handler threads, the auto-saver, shutdown
        self._write_lock = threading.Lock()

    def _path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def _read_json(self, name: str) -> Dict[str, Any]:
        path = self._path(name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Invalid JSON in {path}: {e}")
        except OSError as e:
            raise PersistenceError(f"Cannot read {path}: {e}")
        if not isinstance(data, dict):
            raise PersistenceError(f"{path} must contain a JSON object")
        return data

    def _write_json(self, name: str, payload: Dict[str, Any]) -> None:
        """Atomic write: unique temp file in the same directory, then os.replace"""
        path = self._path(name)
        temp_path = None
        with self._write_lock:
            try:
                os.makedirs(self.data_dir, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(prefix=name + ".", suffix=".tmp", dir=self.data_dir)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(temp_path, path)
            except OSError as e:
                if temp_path and os.path.exists(temp_path):
                    os.remove(temp_path)
                raise PersistenceError(f"Failed to save {path}: {e}")

    # ---- config ----

    def load_config(self) -> DownloadConfig:
        if not os.path.exists(self._path(CONFIG_FILE)):
            config = DownloadConfig()
            try:
                self.save_config(config)
                logger.info(f"PERSIST | CREATE_DEFAULT | record=config | path={self._path(CONFIG_FILE)}")
            except PersistenceError as e:
                logger.error(f"PERSIST | SAVE_FAIL | record=config | error={e}")
            return config
        try:
            config = DownloadConfig.from_dict(self._read_json(CONFIG_FILE))
        except (PersistenceError, ConfigError) as e:
            logger.warning(f"PERSIST | LOAD_FAIL | record=config | error={e} | fallback=defaults")
            return DownloadConfig()
        logger.info(f"PERSIST | LOAD_OK | record=config | targets={len(config.urls)}")
        return config

    def save_config(self, config: DownloadConfig) -> None:
        self._write_json(CONFIG_FILE, config.to_dict())

    # ---- stats ----

    def load_stats(self, now: datetime) -> TrafficStats:
        if not os.path.exists(self._path(STATS_FILE)):
            return TrafficStats.fresh(now)
        try:
            stats = TrafficStats.from_dict(self._read_json(STATS_FILE))
        except (PersistenceError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"PERSIST | LOAD_FAIL | record=stats | error={e} | fallback=empty")
            return TrafficStats.fresh(now)
        logger.info(f"PERSIST | LOAD_OK | record=stats | today={stats.today_date} | archived_days={len(stats.daily)}")
        return stats

    def save_stats(self, stats: TrafficStats) -> None:
        self._write_json(STATS_FILE, stats.to_dict())

    # ---- activity log ----

    def load_logs(self) -> ActivityLog:
        if not os.path.exists(self._path(LOGS_FILE)):
            return ActivityLog()
        try:
            return ActivityLog.from_dict(self._read_json(LOGS_FILE))
        except (PersistenceError, TypeError, ValueError) as e:
            logger.warning(f"PERSIST | LOAD_FAIL | record=logs | error={e} | fallback=empty")
            return ActivityLog()

    def save_logs(self, log_dict: Dict[str, Any]) -> None:
        self._write_json(LOGS_FILE, log_dict)


def flush_runtime_state(state, persistence: StatePersistence) -> bool:
    """Save stats and logs from a RuntimeState. Returns False if any write failed."""
    ok = True
    try:
        persistence.save_stats(state.stats_snapshot())
    except PersistenceError as e:
        logger.error(f"PERSIST | SAVE_FAIL | record=stats | error={e}")
        ok = False
    try:
        persistence.save_logs(state.log_snapshot())
    except PersistenceError as e:
        logger.error(f"PERSIST | SAVE_FAIL | record=logs | error={e}")
        ok = False
    return ok


class StatsAutoSaver:
    """Background thread flushing stats and logs on a fixed interval"""

    def __init__(self, state, persistence: StatePersistence, interval_s: float = 60.0):
        self.state = state
        self.persistence = persistence
        self.interval_s = interval_s
        self.stop_event = threading.Event()
        self.thread = None

    def start(self) -> None:
        if self.thread is not None and self.thread.is_alive():
            return
        self.stop_event.clear()
        self.thread = threading.Thread(target=self._loop, name="autosaver", daemon=True)
        self.thread.start()

    def stop(self) -> None:
        self.stop_event.set()
        if self.thread:
            self.thread.join(timeout=2.0)

    def _loop(self) -> None:
        while not self.stop_event.wait(self.interval_s):
            flush_runtime_state(self.state, self.persistence)
