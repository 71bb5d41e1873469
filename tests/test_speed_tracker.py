#!/usr/bin/env python3
"""
Speed tracker tests - fixed history length, Mbps conversion, disabled output
"""

import os
import sys
import time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from runtime_state import ActivityLog, DownloadConfig, RuntimeState, TrafficStats
from speed_tracker import SpeedTracker, bytes_to_mbps


def make_state(clock):
    return RuntimeState(DownloadConfig(), TrafficStats.fresh(clock.now()), ActivityLog(), clock)


class TestSpeedTracker:

    def test_conversion(self):
        assert bytes_to_mbps(0) == 0.0
        assert bytes_to_mbps(125_000) == 1.0
        assert bytes_to_mbps(1_250_000) == 10.0

    def test_history_is_always_thirty_samples(self, fake_clock):
        state = make_state(fake_clock)
        assert state.status_snapshot()["speed_history"] == [0.0] * 30

        state.toggle_enabled()
        tracker = SpeedTracker(state)
        for i in range(45):
            state.record_bytes(125_000 * (i + 1))
            tracker.tick()
            assert len(state.status_snapshot()["speed_history"]) == 30

        history = state.status_snapshot()["speed_history"]
        assert history[-1] == 45.0
        assert history[0] == 16.0

    def test_tick_reports_drained_bytes(self, fake_clock):
        state = make_state(fake_clock)
        state.toggle_enabled()
        tracker = SpeedTracker(state)

        state.record_bytes(250_000)
        assert tracker.tick() == 2.0
        assert state.status_snapshot()["speed_mbps"] == 2.0
        assert tracker.tick() == 0.0

    def test_disabled_reports_zero_but_drains(self, fake_clock):
        state = make_state(fake_clock)
        tracker = SpeedTracker(state)

        state.record_bytes(500_000)
        assert tracker.tick() == 0.0
        state.toggle_enabled()
        assert tracker.tick() == 0.0
        assert state.status_snapshot()["today_bytes"] == 500_000

    def test_background_loop_samples(self, fake_clock):
        state = make_state(fake_clock)
        state.toggle_enabled()
        state.record_bytes(125_000)
        tracker = SpeedTracker(state, interval_s=0.02)
        tracker.start()
        try:
            deadline = time.monotonic() + 3
            while time.monotonic() < deadline:
                if 1.0 in state.status_snapshot()["speed_history"]:
                    break
                time.sleep(0.01)
        finally:
            tracker.stop()
        assert 1.0 in state.status_snapshot()["speed_history"]
        assert not tracker.thread.is_alive()
