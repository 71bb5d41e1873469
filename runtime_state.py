#!/usr/bin/env python3
"""
Shared Runtime State for DownOnly
Single source of truth for configuration, traffic statistics, live status and
the activity log. Every field lives behind one private lock; callers only see
accessor methods that hold it for the minimum scope.
"""

import calendar
import copy
import re
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from schedule_policy import (
    PolicyDecision,
    current_date,
    evaluate_cycle,
    quota_reached,
    rollover_if_needed,
)

HISTORY_SIZE = 30
DEFAULT_LOG_CAPACITY = 500
DEFAULT_URL = (
    "http://updates-http.cdn-apple.com/2019WinterFCS/fullrestores/041-39257/"
    "32129B6C-292C-11E9-9E72-4511412B0A59/iPhone_4.7_12.1.4_16D57_Restore.ipsw"
)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


class ConfigError(ValueError):
    """Raised when a configuration payload cannot be accepted"""
    pass


class WorkerPhase(Enum):
    """Worker state machine phases"""
    DISABLED = "DISABLED"
    EVALUATING = "EVALUATING"
    OUT_OF_SCHEDULE = "OUT_OF_SCHEDULE"
    QUOTA_REACHED = "QUOTA_REACHED"
    NO_TARGETS = "NO_TARGETS"
    STARTING = "STARTING"
    DOWNLOADING = "DOWNLOADING"
    COOLDOWN = "COOLDOWN"


# Phases that claim the worker is running; never shown while disabled
ACTIVE_PHASES = frozenset([
    WorkerPhase.EVALUATING,
    WorkerPhase.OUT_OF_SCHEDULE,
    WorkerPhase.QUOTA_REACHED,
    WorkerPhase.STARTING,
    WorkerPhase.DOWNLOADING,
    WorkerPhase.COOLDOWN,
])

_BLOCKED_PHASES = {
    "DENY_OUT_OF_SCHEDULE": WorkerPhase.OUT_OF_SCHEDULE,
    "DENY_QUOTA_REACHED": WorkerPhase.QUOTA_REACHED,
}


def _require_int(data: Dict[str, Any], key: str, minimum: int) -> int:
    value = data.get(key)
    # bool is an int subclass; a JSON true is not a speed
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    return value


def _require_time(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be an HH:MM string")
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ConfigError(f"{key} must be an HH:MM string")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ConfigError(f"{key} out of range: {value}")
    return f"{hours:02d}:{minutes:02d}"


def _require_urls(data: Dict[str, Any]) -> List[str]:
    urls = data.get("urls")
    if not isinstance(urls, list):
        raise ConfigError("urls must be a list")
    cleaned = []
    for i, url in enumerate(urls):
        if not isinstance(url, str) or not url.strip():
            raise ConfigError(f"urls[{i}] must be a non-empty string")
        parsed = urlparse(url.strip())
        if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"urls[{i}] is not an http(s) URL: {url!r}")
        cleaned.append(url.strip())
    return cleaned


@dataclass
class DownloadConfig:
    """Download policy, replaced whole by the operator"""
    speed_limit_mbps: int = 5
    daily_quota_gb: int = 200
    schedule_start: str = "00:00"
    schedule_end: str = "23:59"
    urls: List[str] = field(default_factory=lambda: [DEFAULT_URL])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "DownloadConfig":
        """Validate a decoded payload. Raises ConfigError, never partially applies."""
        if not isinstance(data, dict):
            raise ConfigError("config payload must be a JSON object")
        return cls(
            speed_limit_mbps=_require_int(data, "speed_limit_mbps", 1),
            daily_quota_gb=_require_int(data, "daily_quota_gb", 0),
            schedule_start=_require_time(data, "schedule_start"),
            schedule_end=_require_time(data, "schedule_end"),
            urls=_require_urls(data),
        )


@dataclass
class TrafficStats:
    """Per-day byte accounting. today_bytes always belongs to today_date."""
    daily: Dict[str, int] = field(default_factory=dict)
    today_bytes: int = 0
    today_date: str = ""

    @classmethod
    def fresh(cls, now: datetime) -> "TrafficStats":
        return cls(daily={}, today_bytes=0, today_date=current_date(now))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily": dict(self.daily),
            "today_bytes": self.today_bytes,
            "today_date": self.today_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrafficStats":
        daily = data.get("daily") or {}
        return cls(
            daily={str(k): int(v) for k, v in daily.items()},
            today_bytes=int(data.get("today_bytes", 0)),
            today_date=str(data.get("today_date", "")),
        )


@dataclass
class LogEntry:
    time: str
    message: str


class ActivityLog:
    """Bounded operator-facing log ring. Not thread-safe on its own."""

    def __init__(self, max_entries: int = DEFAULT_LOG_CAPACITY,
                 entries: Optional[List[LogEntry]] = None):
        self.max_entries = max_entries if max_entries > 0 else DEFAULT_LOG_CAPACITY
        self.entries: List[LogEntry] = list(entries or [])
        self._trim()

    def append(self, when: datetime, message: str) -> None:
        self.entries.append(LogEntry(time=when.strftime("%H:%M:%S"), message=message))
        self._trim()

    def _trim(self) -> None:
        if len(self.entries) > self.max_entries:
            self.entries = self.entries[-self.max_entries:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_entries": self.max_entries,
            "entries": [asdict(e) for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityLog":
        entries = [
            LogEntry(time=str(e.get("time", "")), message=str(e.get("message", "")))
            for e in data.get("entries") or []
            if isinstance(e, dict)
        ]
        return cls(max_entries=int(data.get("max_entries") or 0), entries=entries)


@dataclass
class CycleSnapshot:
    """What the worker needs after releasing the lock: the decision and a config copy"""
    decision: PolicyDecision
    urls: List[str]
    speed_limit_mbps: int


class RuntimeState:
    """Thread-safe shared state passed by reference to every component"""

    def __init__(self, config: DownloadConfig, stats: TrafficStats,
                 activity_log: ActivityLog, clock, history_size: int = HISTORY_SIZE):
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._clock = clock

        self._config = config
        self._stats = stats
        self._log = activity_log

        # Runtime only, never persisted
        self._enabled = False
        self._phase = WorkerPhase.DISABLED
        self._speed_mbps = 0.0
        self._speed_history = deque([0.0] * history_size, maxlen=history_size)
        self._started_at: Optional[datetime] = None
        self._bytes_this_second = 0

    # ---- change notification ----

    def wait_for_change(self, timeout: float) -> None:
        """Block up to `timeout` seconds or until a toggle/config change/stop"""
        with self._changed:
            self._changed.wait(timeout)

    def notify_change(self) -> None:
        with self._changed:
            self._changed.notify_all()

    # ---- operator intent ----

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def toggle_enabled(self) -> bool:
        with self._changed:
            self._enabled = not self._enabled
            now = self._clock.now()
            if self._enabled:
                self._phase = WorkerPhase.EVALUATING
                self._started_at = now
                self._log.append(now, "service started")
            else:
                self._phase = WorkerPhase.DISABLED
                self._speed_mbps = 0.0
                self._log.append(now, "service stopped")
            self._changed.notify_all()
            return self._enabled

    def force_disable(self, phase: WorkerPhase, message: str) -> None:
        """Turn operator intent off from inside the worker (e.g. no targets)"""
        with self._changed:
            self._enabled = False
            self._phase = phase
            self._speed_mbps = 0.0
            self._log.append(self._clock.now(), message)
            self._changed.notify_all()

    # ---- phase ----

    def get_phase(self) -> WorkerPhase:
        with self._lock:
            return self._phase

    def set_phase(self, phase: WorkerPhase, message: Optional[str] = None) -> bool:
        """
        Record the worker phase. Active phases are only recorded while operator
        intent is on; returns False when a toggle-off got there first.
        """
        with self._lock:
            if phase in ACTIVE_PHASES and not self._enabled:
                return False
            self._phase = phase
            if message:
                self._log.append(self._clock.now(), message)
            return True

    # ---- configuration ----

    def get_config(self) -> DownloadConfig:
        with self._lock:
            return copy.deepcopy(self._config)

    def replace_config(self, config: DownloadConfig, message: Optional[str] = None) -> None:
        with self._changed:
            self._config = copy.deepcopy(config)
            if message:
                self._log.append(self._clock.now(), message)
            self._changed.notify_all()

    # ---- policy cycle ----

    def _rollover_locked(self, now: datetime) -> None:
        if rollover_if_needed(self._stats, now):
            self._log.append(now, "date changed, traffic counter reset")

    def begin_cycle(self) -> CycleSnapshot:
        """Rollover, evaluate policy and snapshot config in one critical section"""
        with self._lock:
            now = self._clock.now()
            self._rollover_locked(now)
            decision = evaluate_cycle(self._config, self._stats, now)
            blocked = _BLOCKED_PHASES.get(decision.code)
            if blocked is not None and self._enabled:
                self._phase = blocked
            return CycleSnapshot(
                decision=decision,
                urls=list(self._config.urls),
                speed_limit_mbps=self._config.speed_limit_mbps,
            )

    def quota_reached(self) -> bool:
        with self._lock:
            return quota_reached(self._stats.today_bytes, self._config.daily_quota_gb)

    def should_abort_fetch(self) -> bool:
        """Abort predicate for an in-flight fetch: intent off or quota used up"""
        with self._lock:
            if not self._enabled:
                return True
            return quota_reached(self._stats.today_bytes, self._config.daily_quota_gb)

    # ---- byte accounting ----

    def record_bytes(self, count: int) -> None:
        with self._lock:
            self._stats.today_bytes += count
            self._bytes_this_second += count

    def sample_throughput(self, convert: Callable[[int], float]) -> float:
        """Rollover check, drain the per-second counter and push one history sample"""
        with self._lock:
            self._rollover_locked(self._clock.now())
            drained = self._bytes_this_second
            self._bytes_this_second = 0
            mbps = convert(drained) if self._enabled else 0.0
            self._speed_mbps = mbps
            self._speed_history.append(mbps)
            return mbps

    # ---- read models ----

    def status_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            uptime = 0
            if self._enabled and self._started_at is not None:
                uptime = int((self._clock.now() - self._started_at).total_seconds())
            return {
                "status": self._phase.value,
                "speed_mbps": self._speed_mbps,
                "speed_history": list(self._speed_history),
                "today_bytes": self._stats.today_bytes,
                "today_date": self._stats.today_date,
                "uptime_seconds": max(0, uptime),
                "daily_quota_gb": self._config.daily_quota_gb,
            }

    def month_history(self, year: int, month: int) -> Dict[str, Any]:
        with self._lock:
            last_day = calendar.monthrange(year, month)[1]
            days = []
            total = 0
            for day in range(1, last_day + 1):
                date_str = f"{year:04d}-{month:02d}-{day:02d}"
                if date_str == self._stats.today_date:
                    count = self._stats.today_bytes
                else:
                    count = self._stats.daily.get(date_str, 0)
                total += count
                days.append({"day": day, "bytes": count})
            return {"month": month, "month_total_bytes": total, "days": days}

    def stats_snapshot(self) -> TrafficStats:
        with self._lock:
            return TrafficStats(
                daily=dict(self._stats.daily),
                today_bytes=self._stats.today_bytes,
                today_date=self._stats.today_date,
            )

    # ---- activity log ----

    def append_log(self, message: str) -> None:
        with self._lock:
            self._log.append(self._clock.now(), message)

    def log_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._log.to_dict()
