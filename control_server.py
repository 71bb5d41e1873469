"""
HTTP Control Server for DownOnly
JSON endpoints over ControlAPI for status, toggling, history, logs and config
"""

import json
import logging
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from urllib.parse import urlparse, parse_qs
from typing import Any, Optional

from control_api import ControlAPI
from runtime_state import ConfigError

ENDPOINTS = [
    "GET /api/status",
    "POST /api/toggle",
    "GET /api/history?month=N",
    "GET /api/logs",
    "GET /api/config",
    "POST /api/config",
]


class ControlHTTPHandler(BaseHTTPRequestHandler):
    """HTTP handler mapping routes onto ControlAPI calls"""

    def __init__(self, *args, api: ControlAPI = None, **kwargs):
        self.api = api
        super().__init__(*args, **kwargs)

    def do_GET(self):
        parsed_url = urlparse(self.path)
        path = parsed_url.path

        if path == "/":
            self.send_json({"name": "DownOnly control API", "endpoints": ENDPOINTS})
        elif path == "/api/status":
            self.send_json(self.api.get_status())
        elif path == "/api/history":
            month = parse_qs(parsed_url.query).get("month", [None])[0]
            self.send_json(self.api.get_history(month))
        elif path == "/api/logs":
            self.send_json(self.api.get_logs())
        elif path == "/api/config":
            self.send_json(self.api.get_config())
        elif path == "/api/toggle":
            self.send_json({"error": "method not allowed"}, status=405)
        else:
            self.send_json({"error": "not found"}, status=404)

    def do_POST(self):
        path = urlparse(self.path).path

        if path == "/api/toggle":
            self.send_json(self.api.toggle_enabled())
        elif path == "/api/config":
            try:
                payload = self.read_json_body()
                result = self.api.set_config(payload)
            except (ValueError, ConfigError) as e:
                # json.JSONDecodeError and ConfigError are both ValueErrors
                self.send_json({"ok": False, "error": str(e)}, status=400)
                return
            self.send_json(result)
        elif path in ("/api/status", "/api/history", "/api/logs"):
            self.send_json({"error": "method not allowed"}, status=405)
        else:
            self.send_json({"error": "not found"}, status=404)

    def read_json_body(self) -> Any:
        content_length = int(self.headers.get("Content-Length", 0))
        if content_length < 0:
            raise ValueError(f"invalid Content-Length: {content_length}")
        raw = self.rfile.read(content_length).decode("utf-8")
        return json.loads(raw)

    def send_json(self, payload: Any, status: int = 200):
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Route access logs through logging instead of stderr"""
        logging.getLogger("downonly.server").debug("HTTP | " + format % args)


class ControlServer:
    """Threaded HTTP server wrapping ControlAPI"""

    def __init__(self, api: ControlAPI, host: str = "0.0.0.0", port: int = 9999):
        self.api = api
        self.host = host
        self.port = port
        self.server: Optional[ThreadingHTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.running = False

        self.logger = logging.getLogger("downonly.server")

    @property
    def base_url(self) -> str:
        host = "127.0.0.1" if self.host in ("0.0.0.0", "") else self.host
        return f"http://{host}:{self.port}"

    def start(self):
        """Start serving in a background thread"""
        if self.running:
            return

        def handler(*args, **kwargs):
            return ControlHTTPHandler(*args, api=self.api, **kwargs)

        try:
            self.server = ThreadingHTTPServer((self.host, self.port), handler)
            self.server.daemon_threads = True
        except OSError as e:
            self.logger.error(f"SERVER | START_FAIL | host={self.host} | port={self.port} | error={e}")
            raise

        # port 0 means "pick a free one"
        self.port = self.server.server_address[1]
        self.running = True
        self.thread = threading.Thread(target=self._run_server, name="control-server", daemon=True)
        self.thread.start()
        self.logger.info(f"SERVER | STARTED | url=http://{self.host}:{self.port}")

    def stop(self):
        if not self.running:
            return
        self.running = False

        if self.server:
            self.server.shutdown()
            self.server.server_close()

        if self.thread:
            self.thread.join(timeout=5)

        self.logger.info("SERVER | STOPPED")

    def _run_server(self):
        try:
            self.server.serve_forever()
        except Exception as e:
            if self.running:
                self.logger.error(f"SERVER | ERROR | error={e}")
