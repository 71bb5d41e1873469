#!/usr/bin/env python3
"""
Schedule & Quota Policy for DownOnly
Pure decision functions: daily time window, daily quota, calendar rollover
No side effects outside the stats object handed to rollover_if_needed
"""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from runtime_state import DownloadConfig, TrafficStats

BYTES_PER_GB = 1_000_000_000
DATE_FORMAT = "%Y-%m-%d"


@dataclass
class PolicyDecision:
    """Policy decision result for one evaluation cycle"""
    action: str  # ALLOW, DENY
    reason: str
    code: str = ""  # structured denial code (e.g. DENY_QUOTA_REACHED)

    @property
    def allowed(self) -> bool:
        return self.action == "ALLOW"


def parse_time_str(value: str) -> int:
    """Convert "HH:MM" to minutes of day. Malformed input maps to midnight."""
    if not isinstance(value, str):
        return 0
    parts = value.split(":")
    if len(parts) != 2:
        return 0
    try:
        hours = int(parts[0])
    except ValueError:
        hours = 0
    try:
        minutes = int(parts[1])
    except ValueError:
        minutes = 0
    return hours * 60 + minutes


def in_schedule(now: datetime, start: str, end: str) -> bool:
    """
    Check whether `now` falls inside the daily window [start, end]

    Both bounds are inclusive. start > end wraps past midnight.
    start == end is a zero-width window and means "always".
    """
    now_min = now.hour * 60 + now.minute
    start_min = parse_time_str(start)
    end_min = parse_time_str(end)
    if start_min == end_min:
        return True
    if start_min < end_min:
        return start_min <= now_min <= end_min
    return now_min >= start_min or now_min <= end_min


def quota_reached(today_bytes: int, daily_quota_gb: int) -> bool:
    return today_bytes >= daily_quota_gb * BYTES_PER_GB


def current_date(now: datetime) -> str:
    return now.strftime(DATE_FORMAT)


def rollover_if_needed(stats: "TrafficStats", now: datetime) -> bool:
    """
    Archive yesterday's counter and reset when the calendar day changed

    After archiving, every day from a year other than the current one is
    dropped, including the day just archived on 1 January.
    Returns True when a rollover happened. Idempotent within a day.
    """
    today = current_date(now)
    if stats.today_date == today:
        return False

    if stats.today_date and stats.today_bytes > 0:
        stats.daily[stats.today_date] = stats.today_bytes
    stats.today_bytes = 0
    stats.today_date = today

    this_year = now.strftime("%Y")
    for day in [d for d in stats.daily if not d.startswith(this_year)]:
        del stats.daily[day]
    return True


def evaluate_cycle(config: "DownloadConfig", stats: "TrafficStats",
                   now: datetime) -> PolicyDecision:
    """Ordered gate checks for one worker cycle: schedule, quota, targets"""
    if not in_schedule(now, config.schedule_start, config.schedule_end):
        return PolicyDecision(
            "DENY",
            f"outside window {config.schedule_start}-{config.schedule_end}",
            code="DENY_OUT_OF_SCHEDULE",
        )
    if quota_reached(stats.today_bytes, config.daily_quota_gb):
        return PolicyDecision(
            "DENY",
            f"daily quota {config.daily_quota_gb} GB reached",
            code="DENY_QUOTA_REACHED",
        )
    if not config.urls:
        return PolicyDecision("DENY", "no download targets configured",
                              code="DENY_NO_TARGETS")
    return PolicyDecision("ALLOW", "all policies passed")
