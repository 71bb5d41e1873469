"""
Local Payload Server for DownOnly testing
Deterministic HTTP server producing synthetic payloads:
  /bytes/<n>      200 with n bytes
  /slow/<n>       200 with n bytes, 10ms pause per 8 KiB chunk
  /truncated/<n>  announces n bytes, sends half, then drops the connection
  /status/<code>  bare response with that status code
"""

import socket
import threading
import time
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler

PATTERN = (b"ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789" * 29)[:1024]
SEND_CHUNK = 8192


class PayloadRequestHandler(BaseHTTPRequestHandler):
    """Handler for synthetic payload endpoints"""

    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        """Override to suppress request logs"""
        pass

    def _parse(self):
        parts = self.path.strip("/").split("/")
        if len(parts) != 2:
            return None, None
        try:
            return parts[0], int(parts[1])
        except ValueError:
            return None, None

    def do_GET(self):
        self.server.record_request(self.path, self.headers.get("User-Agent", ""))
        mode, value = self._parse()

        if mode == "status":
            self.send_response(value)
            self.send_header("Content-Length", "0")
            self.send_header("Connection", "close")
            self.end_headers()
            return

        if mode not in ("bytes", "slow", "truncated"):
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.send_header("Connection", "close")
            self.end_headers()
            return

        size = value
        to_send = size // 2 if mode == "truncated" else size
        self.send_response(200)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(size))
        self.send_header("Connection", "close")
        self.end_headers()

        self._send_payload(to_send, delay=0.01 if mode == "slow" else 0.0)
        if mode == "truncated":
            self.close_connection = True
            self.wfile.flush()
            self.connection.shutdown(socket.SHUT_RDWR)

    def _send_payload(self, size, delay=0.0):
        sent = 0
        block = PATTERN * (SEND_CHUNK // len(PATTERN))
        try:
            while sent < size:
                n = min(SEND_CHUNK, size - sent)
                self.wfile.write(block[:n])
                sent += n
                if delay:
                    time.sleep(delay)
        except (BrokenPipeError, ConnectionResetError):
            # Client went away (aborted fetch)
            pass


class _PayloadHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._requests_lock = threading.Lock()
        self.requests_seen = []

    def record_request(self, path, user_agent):
        with self._requests_lock:
            self.requests_seen.append((path, user_agent))


class LocalPayloadServer:
    """Local HTTP server with stable lifecycle for testing"""

    def __init__(self, port=0):
        self.port = port
        self.server = None
        self.thread = None
        self.base_url = None

    def start(self):
        """Start server and return base_url"""
        if self.server is not None:
            raise RuntimeError("Server already started")

        self.server = _PayloadHTTPServer(("127.0.0.1", self.port), PayloadRequestHandler)
        self.port = self.server.server_address[1]
        self.base_url = f"http://127.0.0.1:{self.port}"

        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        return self.base_url

    def stop(self):
        if self.server:
            self.server.shutdown()
            self.server.server_close()
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=2)
        self.server = None
        self.thread = None
        self.base_url = None

    @property
    def requests_seen(self):
        if not self.server:
            return []
        with self.server._requests_lock:
            return list(self.server.requests_seen)

    def url(self, mode, value):
        return f"{self.base_url}/{mode}/{value}"
