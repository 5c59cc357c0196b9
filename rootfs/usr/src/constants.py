"""
MQTT Exporter Constants

Shared constants and enums for type safety across the application.
"""

from enum import StrEnum


class ConnectionState(StrEnum):
    """Lifecycle states of the broker connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


class ErrorType(StrEnum):
    """Label values for the message error counter."""

    JSON_PARSE_ERROR = "json_parse_error"
    INVALID_TEMPERATURE = "invalid_temperature"
    SUBSCRIPTION_ERROR = "subscription_error"


class HealthStatus(StrEnum):
    """Values of the 'status' field on the health endpoint."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


METRICS_PATH = "/metrics"
HEALTH_PATH = "/health"

# Grace period for the DISCONNECT packet to leave before the network loop stops
DISCONNECT_GRACE_SECONDS = 0.25
SHUTDOWN_TIMEOUT_SECONDS = 5.0
