"""Prometheus rendering of the metric store.

The exposed series are computed from a single store snapshot on every scrape, so the
gauges and counters never drift from the store.
"""

import logging

from prometheus_client import CollectorRegistry, GCCollector, PlatformCollector, ProcessCollector
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.registry import Collector

from state import MetricStore

logger = logging.getLogger(__name__)

TEMPERATURE_METRIC = "mqtt_temperature_celsius"
CONNECTION_METRIC = "mqtt_connection_status"
ERRORS_METRIC = "mqtt_message_errors_total"


class BridgeCollector(Collector):
    """Custom collector that renders one consistent MetricStore snapshot per scrape."""

    def __init__(self, store: MetricStore):
        self._store = store

    def collect(self):
        snapshot = self._store.snapshot()

        temperature = GaugeMetricFamily(
            TEMPERATURE_METRIC,
            "Temperature values received from MQTT topics",
            labels=["topic"],
        )
        for topic, value in sorted(snapshot.temperatures.items()):
            temperature.add_metric([topic], value)
        yield temperature

        yield GaugeMetricFamily(
            CONNECTION_METRIC,
            "MQTT connection status (1=connected, 0=disconnected)",
            value=1 if snapshot.connected else 0,
        )

        errors = CounterMetricFamily(
            ERRORS_METRIC,
            "Total number of MQTT message processing errors",
            labels=["error_type"],
        )
        for error_type, count in sorted(snapshot.errors.items()):
            errors.add_metric([error_type], count)
        yield errors


def build_registry(store: MetricStore, process_metrics: bool = True) -> CollectorRegistry:
    """Create a dedicated registry holding the bridge collector.

    Args:
        store: Store rendered on every scrape.
        process_metrics: Also register the standard process, platform and GC collectors.
    """
    registry = CollectorRegistry(auto_describe=True)
    registry.register(BridgeCollector(store))
    if process_metrics:
        ProcessCollector(registry=registry)
        PlatformCollector(registry=registry)
        GCCollector(registry=registry)
    return registry
