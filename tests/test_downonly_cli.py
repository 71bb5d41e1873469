#!/usr/bin/env python3
"""
CLI tests - client subcommands against a live control server, exit codes
"""

import json
import os
import shutil
import sys
import tempfile
from datetime import datetime

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from control_api import ControlAPI
from control_server import ControlServer
from downonly_cli import build_parser, main
from runtime_state import ActivityLog, DownloadConfig, RuntimeState, TrafficStats
from state_persistence import StatePersistence
from conftest import FakeClock


class TestCLI:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        clock = FakeClock(datetime(2024, 6, 15, 12, 0, 0))
        self.state = RuntimeState(DownloadConfig(), TrafficStats.fresh(clock.now()),
                                  ActivityLog(), clock)
        api = ControlAPI(self.state, StatePersistence(self.temp_dir), clock)
        self.server = ControlServer(api, host="127.0.0.1", port=0)
        self.server.start()
        self.url = self.server.base_url

    def teardown_method(self):
        self.server.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_status(self, capsys):
        self.state.record_bytes(3_000_000)
        main(["status", "--url", self.url])
        out = capsys.readouterr().out
        assert out.startswith("OK | status=DISABLED")
        assert "today=3.00 MB (2024-06-15)" in out

    def test_toggle(self, capsys):
        main(["toggle", "--url", self.url])
        assert "is_running=True" in capsys.readouterr().out
        assert self.state.is_enabled()

    def test_history_and_logs(self, capsys):
        self.state.record_bytes(2_000_000)
        self.state.append_log("first")
        self.state.append_log("second")

        main(["history", "--url", self.url])
        out = capsys.readouterr().out
        assert "month=6" in out
        assert "15  2.00 MB" in out

        main(["logs", "--url", self.url, "--tail", "1"])
        assert capsys.readouterr().out.strip() == "[12:00:00] second"

    def test_config_set_and_show(self, capsys):
        payload = {
            "speed_limit_mbps": 3,
            "daily_quota_gb": 1,
            "schedule_start": "02:00",
            "schedule_end": "04:00",
            "urls": ["http://example.com/x.bin"],
        }
        path = os.path.join(self.temp_dir, "new_config.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f)

        main(["config", "set", "--file", path, "--url", self.url])
        assert "OK | config updated" in capsys.readouterr().out

        main(["config", "show", "--url", self.url])
        assert json.loads(capsys.readouterr().out) == payload

    def test_rejected_config_exits_2(self, capsys):
        path = os.path.join(self.temp_dir, "bad.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"speed_limit_mbps": 0}, f)

        with pytest.raises(SystemExit) as exc:
            main(["config", "set", "--file", path, "--url", self.url])
        assert exc.value.code == 2
        assert "HTTP 400" in capsys.readouterr().err

    def test_unreachable_server_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["status", "--url", "http://127.0.0.1:1"])
        assert exc.value.code == 2
        assert "cannot reach" in capsys.readouterr().err


class TestParser:

    def test_version(self, capsys):
        main(["version"])
        assert capsys.readouterr().out.strip() == "DownOnly v1.0.0"

    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve"])
        assert args.port == 9999
        assert args.data_dir == "data"
        assert args.host == "0.0.0.0"

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 2
        assert "usage: downonly" in capsys.readouterr().out
