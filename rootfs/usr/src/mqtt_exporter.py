import logging
import signal
import sys
import threading
import time

import config as config_module
from constants import SHUTDOWN_TIMEOUT_SECONDS
from exposure_server import ExposureServer
from mqtt_handler import ConnectionManager
import state as state_module
from utils import get_version

"""
Description
-----------
This small Python application subscribes to the temperature status topics of Shelly devices (for
example a Shelly Plus Uni with DS18B20 probes) and exposes the latest reading of every topic as a
Prometheus gauge.

Payload
-------
Each topic carries a JSON document like:

{"id": 100, "tC": 22.5, "tF": 72.5, "errors": []}

Only tC is exported. A payload without a usable tC is counted as invalid_temperature; a payload
that is not JSON (or has wrongly typed fields) is counted as json_parse_error.

HTTP
----
GET /metrics - Prometheus exposition:
    mqtt_temperature_celsius{topic="..."}
    mqtt_connection_status
    mqtt_message_errors_total{error_type="..."}
GET /health  - {"status": "healthy|unhealthy", "mqtt_connected": true|false, "timestamp": "..."}
               (always HTTP 200)

Configuration (environment)
---------------------------
MQTT_BROKER_URL, MQTT_CLIENT_ID, MQTT_TOPICS (comma separated), METRICS_PORT,
RECONNECT_DELAY_SECONDS, MAX_RECONNECT_DELAY_SECONDS, MQTT_KEEPALIVE_SECONDS, LOG_LEVEL
"""

logger = logging.getLogger(__name__)

stopper = threading.Event()


def shutdown(manager: ConnectionManager, server: ExposureServer, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> bool:
    """Stop the MQTT task and HTTP server within a shared time budget."""
    deadline = time.monotonic() + timeout

    manager.stop()
    manager.join(max(deadline - time.monotonic(), 0))
    if manager.is_alive():
        logger.warning("MQTT task did not stop in time")

    stopped = server.stop(max(deadline - time.monotonic(), 0))
    if manager.is_alive() or not stopped:
        logger.warning(f"Shutdown exceeded {timeout:.1f}s, exiting anyway")
        return False
    return True


def main():
    # Signal handling for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Signal {signum} received, stopping...")
        stopper.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = config_module.load_config()
        config_module.configure_logging(config.log_level)
        context = state_module.AppContext(config)
        context.version = get_version()
        logger.info(f"Start: mqtt-exporter - version: {context.version}")
        logger.debug(f"Config: {config.redacted()}")
        server = ExposureServer(context.store, config.metrics_port)
    except Exception:
        logger.error("Fatal exception during startup", exc_info=True)
        sys.exit(1)

    manager = ConnectionManager(context, stopper)
    server.start()
    manager.start()

    # Wait with a timeout so signals can interrupt the main thread
    while not stopper.wait(1):
        pass

    logger.info("Shutting down gracefully...")
    shutdown(manager, server)
    logger.info("Stop: mqtt-exporter")


if __name__ == "__main__":
    main()
