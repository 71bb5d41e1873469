#!/usr/bin/env python3
"""
Control API tests - status, toggle, history month selection, config replace
"""

import json
import os
import shutil
import sys
import tempfile
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from control_api import ControlAPI, parse_month
from runtime_state import ActivityLog, ConfigError, DownloadConfig, RuntimeState, TrafficStats
from state_persistence import StatePersistence

NEW_CONFIG = {
    "speed_limit_mbps": 25,
    "daily_quota_gb": 12,
    "schedule_start": "23:00",
    "schedule_end": "07:00",
    "urls": ["https://mirror.example/disk.img"],
}


class TestParseMonth:

    @pytest.mark.parametrize("value,expected", [
        ("1", 1), ("12", 12), (3, 3),
        ("0", 6), ("13", 6), ("-2", 6), ("june", 6), ("", 6), (None, 6),
    ])
    def test_values(self, value, expected):
        assert parse_month(value, 6) == expected


class TestControlAPI:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.persistence = StatePersistence(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_api(self, clock, stats=None, persistence=None):
        state = RuntimeState(DownloadConfig(), stats or TrafficStats.fresh(clock.now()),
                             ActivityLog(), clock)
        return ControlAPI(state, persistence or self.persistence, clock), state

    def test_status_shape(self, fake_clock):
        api, _ = self.make_api(fake_clock)
        status = api.get_status()
        assert set(status) == {"status", "speed_mbps", "speed_history", "today_bytes",
                               "today_date", "uptime_seconds", "daily_quota_gb"}
        assert status["status"] == "DISABLED"
        assert status["today_date"] == "2024-06-15"
        assert status["daily_quota_gb"] == 200
        assert len(status["speed_history"]) == 30

    def test_toggle_round_trip(self, fake_clock):
        api, state = self.make_api(fake_clock)
        assert api.toggle_enabled() == {"is_running": True}
        assert state.is_enabled()
        assert api.toggle_enabled() == {"is_running": False}
        messages = [e["message"] for e in api.get_logs()["entries"]]
        assert messages == ["service started", "service stopped"]

    def test_history_month_selection(self, fake_clock):
        stats = TrafficStats(daily={"2024-02-29": 123, "2024-06-01": 5},
                             today_bytes=9, today_date="2024-06-15")
        api, _ = self.make_api(fake_clock, stats=stats)

        current = api.get_history()
        assert current["month"] == 6
        assert len(current["days"]) == 30
        assert current["month_total_bytes"] == 14

        february = api.get_history("2")
        assert february["month"] == 2
        assert len(february["days"]) == 29
        assert february["days"][28] == {"day": 29, "bytes": 123}

        assert api.get_history("99")["month"] == 6

    def test_set_config_replaces_and_persists(self, fake_clock):
        api, state = self.make_api(fake_clock)
        assert api.set_config(dict(NEW_CONFIG)) == {"ok": True}

        assert api.get_config() == NEW_CONFIG
        assert api.get_status()["daily_quota_gb"] == 12
        with open(os.path.join(self.temp_dir, "config.json"), encoding="utf-8") as f:
            assert json.load(f) == NEW_CONFIG
        assert api.get_logs()["entries"][-1]["message"] == \
            "config updated: 25 Mbps, 12 GB/day, 23:00 - 07:00"

    def test_invalid_config_leaves_state_untouched(self, fake_clock):
        api, _ = self.make_api(fake_clock)
        before = api.get_config()

        bad = dict(NEW_CONFIG, speed_limit_mbps=0)
        with pytest.raises(ConfigError):
            api.set_config(bad)
        with pytest.raises(ConfigError):
            api.set_config("not an object")

        assert api.get_config() == before
        assert not os.path.exists(os.path.join(self.temp_dir, "config.json"))
        assert api.get_logs()["entries"] == []

    def test_save_failure_keeps_new_config_in_memory(self, fake_clock):
        blocker = os.path.join(self.temp_dir, "blocker")
        with open(blocker, "w", encoding="utf-8") as f:
            f.write("file, not a directory")
        api, _ = self.make_api(fake_clock, persistence=StatePersistence(os.path.join(blocker, "data")))

        assert api.set_config(dict(NEW_CONFIG)) == {"ok": True}
        assert api.get_config()["speed_limit_mbps"] == 25

    def test_config_view_is_a_copy(self, fake_clock):
        api, state = self.make_api(fake_clock)
        view = api.get_config()
        view["urls"].append("http://mutated.example/")
        assert state.get_config().urls == DownloadConfig().urls

    def test_concurrent_set_config_keeps_disk_and_memory_in_step(self, fake_clock):
        api, state = self.make_api(fake_clock)
        small = dict(NEW_CONFIG)
        large = dict(NEW_CONFIG, urls=[f"https://mirror.example/{i}.img" for i in range(300)])
        path = os.path.join(self.temp_dir, "config.json")

        for _ in range(40):
            threads = [threading.Thread(target=api.set_config, args=(dict(p),))
                       for p in (small, large)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

            with open(path, encoding="utf-8") as f:
                assert json.load(f) == api.get_config()
