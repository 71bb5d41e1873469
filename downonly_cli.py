#!/usr/bin/env python3
"""
downonly CLI entrypoint -- DownOnly throttled traffic agent

Usage:
  python downonly_cli.py serve   [--host H] [--port P] [--data-dir D] [--log-file F]
  python downonly_cli.py status  [--url URL]
  python downonly_cli.py toggle  [--url URL]
  python downonly_cli.py history [--month N]
  python downonly_cli.py logs    [--tail N]
  python downonly_cli.py config show
  python downonly_cli.py config set --file <config.json>
  python downonly_cli.py version
"""

import argparse
import json
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler

import requests

from download_worker import format_bytes

DEFAULT_URL = "http://127.0.0.1:9999"


def setup_logging(level: str = "INFO", log_file: str = None):
    """Console + rotating file logging (5 MB max, 5 backups)"""
    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        ))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """serve: run the agent until SIGINT/SIGTERM"""
    from downonly_service import DownOnlyService

    log_file = args.log_file or os.path.join(args.data_dir, "downonly.log")
    setup_logging(args.log_level, log_file)

    service = DownOnlyService(data_dir=args.data_dir, host=args.host, port=args.port)
    stop_requested = threading.Event()

    def _signal_handler(sig, frame):
        stop_requested.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    service.start()
    print(f"DownOnly running -> http://{args.host}:{service.server.port}")

    while not stop_requested.wait(1.0):
        pass

    print("\nSaving state...", file=sys.stderr)
    ok = service.shutdown()
    sys.exit(0 if ok else 1)


# ---------------------------------------------------------------------------
# client commands
# ---------------------------------------------------------------------------

def _call(args, method: str, path: str, **kwargs):
    url = args.url.rstrip("/") + path
    try:
        response = requests.request(method, url, timeout=10, **kwargs)
    except requests.RequestException as e:
        print(f"ERROR: cannot reach {url}: {e}", file=sys.stderr)
        sys.exit(2)
    if response.status_code != 200:
        print(f"ERROR: HTTP {response.status_code}: {response.text.strip()}", file=sys.stderr)
        sys.exit(2)
    return response.json()


def cmd_status(args):
    status = _call(args, "GET", "/api/status")
    print(f"OK | status={status['status']} | speed_mbps={status['speed_mbps']:.2f} "
          f"| today={format_bytes(status['today_bytes'])} ({status['today_date']}) "
          f"| quota_gb={status['daily_quota_gb']} | uptime_s={status['uptime_seconds']}")


def cmd_toggle(args):
    result = _call(args, "POST", "/api/toggle")
    print(f"OK | is_running={result['is_running']}")


def cmd_history(args):
    params = {"month": args.month} if args.month else None
    history = _call(args, "GET", "/api/history", params=params)
    print(f"OK | month={history['month']} | total={format_bytes(history['month_total_bytes'])}")
    for day in history["days"]:
        if day["bytes"]:
            print(f"  {day['day']:2d}  {format_bytes(day['bytes'])}")


def cmd_logs(args):
    logs = _call(args, "GET", "/api/logs")
    entries = logs["entries"]
    if args.tail:
        entries = entries[-args.tail:]
    for entry in entries:
        print(f"[{entry['time']}] {entry['message']}")


def cmd_config_show(args):
    print(json.dumps(_call(args, "GET", "/api/config"), indent=2))


def cmd_config_set(args):
    try:
        with open(args.file, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(2)
    _call(args, "POST", "/api/config", json=payload)
    print(f"OK | config updated from {args.file}")


def cmd_version(args):
    from downonly_service import APP_VERSION
    print(f"DownOnly v{APP_VERSION}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="downonly",
        description="DownOnly: throttled, scheduled, quota-capped traffic agent",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve = subparsers.add_parser("serve", help="Run the agent and its control server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=9999)
    serve.add_argument("--data-dir", default="data")
    serve.add_argument("--log-level", default="INFO")
    serve.add_argument("--log-file", default=None)
    serve.set_defaults(func=cmd_serve)

    def client(name, help_text, func):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--url", default=DEFAULT_URL)
        sub.set_defaults(func=func)
        return sub

    client("status", "Show live status", cmd_status)
    client("toggle", "Enable/disable downloading", cmd_toggle)
    hist = client("history", "Per-day traffic for a month", cmd_history)
    hist.add_argument("--month", type=int, default=None)
    logs = client("logs", "Show the activity log", cmd_logs)
    logs.add_argument("--tail", type=int, default=None)

    config_parser = subparsers.add_parser("config", help="Download policy")
    config_sub = config_parser.add_subparsers(dest="config_command", help="Config sub-commands")
    show = config_sub.add_parser("show", help="Print current config")
    show.add_argument("--url", default=DEFAULT_URL)
    show.set_defaults(func=cmd_config_show)
    set_cmd = config_sub.add_parser("set", help="Replace config from a JSON file")
    set_cmd.add_argument("--file", required=True, metavar="FILE")
    set_cmd.add_argument("--url", default=DEFAULT_URL)
    set_cmd.set_defaults(func=cmd_config_set)

    ver = subparsers.add_parser("version", help="Print version")
    ver.set_defaults(func=cmd_version)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(2)

    args.func(args)


if __name__ == "__main__":
    main()
