"""
Exposure Server

Serves the Prometheus scrape endpoint and a JSON health endpoint from the metric store.
"""

import datetime
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import json
import logging
import threading
from urllib.parse import urlsplit

from prometheus_client import CollectorRegistry
from prometheus_client.exposition import choose_encoder

from constants import HEALTH_PATH, METRICS_PATH, HealthStatus
from metrics import build_registry
from state import MetricStore

logger = logging.getLogger(__name__)


def health_payload(store: MetricStore, now: datetime.datetime | None = None) -> dict:
    """Build the health document. The status is derived only from the connection flag."""
    connected = store.connected
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return {
        "status": HealthStatus.HEALTHY if connected else HealthStatus.UNHEALTHY,
        "mqtt_connected": connected,
        "timestamp": now.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


class ExposureRequestHandler(BaseHTTPRequestHandler):
    """Routes GET requests to the metrics and health renderers."""

    server: "_ExposureHTTPServer"

    def do_GET(self):
        path = urlsplit(self.path).path
        if path == METRICS_PATH:
            self._send_metrics()
        elif path == HEALTH_PATH:
            self._send_health()
        else:
            self._send(HTTPStatus.NOT_FOUND, b"Not Found\n", "text/plain; charset=utf-8")

    def _send_metrics(self):
        encoder, content_type = choose_encoder(self.headers.get("Accept"))
        body = encoder(self.server.registry)
        self._send(HTTPStatus.OK, body, content_type)

    def _send_health(self):
        # Always 200: probes that treat non-200 as fatal must not restart us on a broker outage
        body = json.dumps(health_payload(self.server.store)).encode("utf-8") + b"\n"
        self._send(HTTPStatus.OK, body, "application/json")

    def _send(self, status: HTTPStatus, body: bytes, content_type: str):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug(f"HTTP {self.address_string()} - {format % args}")


class _ExposureHTTPServer(ThreadingHTTPServer):
    # Join request threads on close so in-flight responses complete
    daemon_threads = False
    block_on_close = True

    def __init__(self, address, store: MetricStore, registry: CollectorRegistry):
        self.store = store
        self.registry = registry
        super().__init__(address, ExposureRequestHandler)


class ExposureServer:
    """
    HTTP listener for /metrics and /health.

    The socket is bound on construction, so a busy port surfaces as an OSError at startup.
    """

    def __init__(self, store: MetricStore, port: int, host: str = "", registry: CollectorRegistry | None = None):
        self.store = store
        self.registry = registry if registry is not None else build_registry(store)
        self._httpd = _ExposureHTTPServer((host, port), store, self.registry)
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        return self._httpd.server_address[1]

    def start(self) -> None:
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="exposure-server", daemon=True)
        self._thread.start()
        logger.info(f"Prometheus metrics server running on :{self.port}")

    def stop(self, timeout: float) -> bool:
        """
        Stop accepting connections and wait for in-flight requests.

        Args:
            timeout: Upper bound in seconds for the whole shutdown.

        Returns:
            bool: True if the server stopped within the timeout.
        """

        def _shutdown():
            if self._thread is not None:
                self._httpd.shutdown()
            self._httpd.server_close()

        stopper = threading.Thread(target=_shutdown, name="exposure-server-stop", daemon=True)
        stopper.start()
        stopper.join(timeout)
        if stopper.is_alive():
            logger.warning(f"HTTP server did not stop within {timeout:.1f}s")
            return False
        return True
