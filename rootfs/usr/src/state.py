"""
MQTT Exporter State

Thread-safe metric store, its snapshots, and the application context shared by all components.
"""

from dataclasses import dataclass, field
import datetime
import logging
import threading
from types import MappingProxyType
from typing import Mapping

from config import ConfigModel

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------------
# Models
# ------------------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricSnapshot:
    """Point-in-time copy of the metric store, safe to render without holding any lock."""

    temperatures: Mapping[str, float] = field(default_factory=dict)
    connected: bool = False
    errors: Mapping[str, int] = field(default_factory=dict)


class MetricStore:
    """
    Latest temperature per topic, error counters and the broker connection flag.

    Written from the MQTT network thread and read from HTTP request threads. Every
    operation holds the same lock, so a snapshot never mixes pre- and post-update state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._temperatures: dict[str, float] = {}
        self._errors: dict[str, int] = {}
        self._connected = False

    def record_temperature(self, topic: str, value: float) -> None:
        """Store the latest Celsius value for a topic."""
        with self._lock:
            self._temperatures[topic] = float(value)

    def record_error(self, error_type: str) -> None:
        """Increment the counter for an error class, creating it at 1 on first use."""
        with self._lock:
            self._errors[error_type] = self._errors.get(error_type, 0) + 1

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            self._connected = bool(connected)

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    def snapshot(self) -> MetricSnapshot:
        with self._lock:
            temperatures = dict(self._temperatures)
            errors = dict(self._errors)
            connected = self._connected
        return MetricSnapshot(
            temperatures=MappingProxyType(temperatures),
            connected=connected,
            errors=MappingProxyType(errors),
        )


class AppContext:
    """
    Application context holding the configuration and shared metric state.

    This class is passed to components instead of relying on module-level globals.
    """

    def __init__(self, config: ConfigModel | None = None, store: MetricStore | None = None):
        self.config = config if config is not None else ConfigModel()
        self.store = store if store is not None else MetricStore()
        self.startup_time: str = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.version: str = "Unknown"
