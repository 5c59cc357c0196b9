"""
MQTT Exporter Healthcheck

Lightweight healthcheck script for Docker HEALTHCHECK.
Queries the exporter's /health endpoint on localhost.
Exit code 0 = healthy, 1 = unhealthy.
"""

import argparse
import json
import os
import sys
import urllib.error
import urllib.request

from config import DEFAULT_METRICS_PORT

DEFAULT_TIMEOUT = 3.0


def health_url(port: int | None = None) -> str:
    if port is None:
        try:
            port = int(os.getenv("METRICS_PORT", DEFAULT_METRICS_PORT))
        except ValueError:
            port = DEFAULT_METRICS_PORT
    return f"http://127.0.0.1:{port}/health"


def probe(url: str, require_connected: bool = False, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Return True if the health endpoint answers (and reports a broker connection, if required)."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            if response.status != 200:
                return False
            body = json.loads(response.read().decode("utf-8"))
    except (urllib.error.URLError, json.JSONDecodeError, OSError):
        return False

    if not isinstance(body, dict):
        return False
    if require_connected:
        return body.get("mqtt_connected") is True
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="healthcheck", description="Probe the MQTT exporter health endpoint")
    parser.add_argument("--port", type=int, default=None, help="Metrics port (default: $METRICS_PORT or 8888)")
    parser.add_argument("--require-connected", action="store_true", help="Fail when the broker is disconnected")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    args = parser.parse_args(argv)

    return 0 if probe(health_url(args.port), args.require_connected, args.timeout) else 1


if __name__ == "__main__":
    sys.exit(main())
