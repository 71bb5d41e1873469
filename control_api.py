#!/usr/bin/env python3
"""
Control API for DownOnly
Transport-agnostic operations for the operator surface. Thread-safe because
every call goes through RuntimeState accessors; attempt-level errors never
surface here, only current state.
"""

import logging
import threading
from typing import Any, Dict, Optional

from runtime_state import ConfigError, DownloadConfig, RuntimeState
from state_persistence import PersistenceError, StatePersistence

logger = logging.getLogger("downonly.api")


def parse_month(value: Any, default: int) -> int:
    """Month 1..12 from a query value; anything else falls back to default"""
    try:
        month = int(value)
    except (TypeError, ValueError):
        return default
    if 1 <= month <= 12:
        return month
    return default


class ControlAPI:
    """Operator operations over the shared runtime state"""

    def __init__(self, state: RuntimeState, persistence: StatePersistence, clock):
        self.state = state
        self.persistence = persistence
        self.clock = clock
        # Replace and save as one step so the file matches the live config
        self._config_lock = threading.Lock()

    def get_status(self) -> Dict[str, Any]:
        return self.state.status_snapshot()

    def toggle_enabled(self) -> Dict[str, bool]:
        enabled = self.state.toggle_enabled()
        logger.info(f"API | TOGGLE | enabled={enabled}")
        return {"is_running": enabled}

    def get_history(self, month: Optional[Any] = None) -> Dict[str, Any]:
        now = self.clock.now()
        return self.state.month_history(now.year, parse_month(month, now.month))

    def get_logs(self) -> Dict[str, Any]:
        return self.state.log_snapshot()

    def get_config(self) -> Dict[str, Any]:
        return self.state.get_config().to_dict()

    def set_config(self, payload: Any) -> Dict[str, bool]:
        """
        Replace the whole configuration

        Raises ConfigError before touching state when the payload is invalid.
        A failed save is logged; the in-memory config stays authoritative.
        """
        config = DownloadConfig.from_dict(payload)
        with self._config_lock:
            self.state.replace_config(
                config,
                message=(f"config updated: {config.speed_limit_mbps} Mbps, "
                         f"{config.daily_quota_gb} GB/day, "
                         f"{config.schedule_start} - {config.schedule_end}"),
            )
            try:
                self.persistence.save_config(config)
            except PersistenceError as e:
                logger.error(f"API | CONFIG_SAVE_FAIL | error={e}")
        logger.info(f"API | CONFIG_SET | targets={len(config.urls)} | limit_mbps={config.speed_limit_mbps}")
        return {"ok": True}
