"""
MQTT Exporter Configuration

Handles configuration loading from environment variables and global logging setup.
"""

import logging
import math
import os
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from utils import parse_broker_url

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------------
# Defaults
# ------------------------------------------------------------------------------------
DEFAULT_BROKER_URL = "tcp://192.168.1.27:1883"
DEFAULT_CLIENT_ID = "shelly-mqtt-prometheus"
DEFAULT_METRICS_PORT = 8888
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_MAX_RECONNECT_DELAY = 60.0
DEFAULT_KEEPALIVE = 60
DEFAULT_TOPICS = (
    "shellyplusuni/status/temperature:100",
    "shellyplusuni/status/temperature:101",
)
DEFAULT_LOG_LEVEL = "INFO"
MAX_DELAY_SECONDS = 86400.0

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"

# ------------------------------------------------------------------------------------
# Configuration Models
# ------------------------------------------------------------------------------------

class ConfigModel(BaseModel):
    """Exporter configuration, immutable after load."""

    model_config = ConfigDict(frozen=True)

    broker_url: str = DEFAULT_BROKER_URL
    client_id: str = DEFAULT_CLIENT_ID
    topics: tuple[str, ...] = Field(default=DEFAULT_TOPICS, min_length=1)
    metrics_port: int = Field(default=DEFAULT_METRICS_PORT, ge=1, le=65535)
    reconnect_delay: float = Field(default=DEFAULT_RECONNECT_DELAY, gt=0)
    max_reconnect_delay: float = Field(default=DEFAULT_MAX_RECONNECT_DELAY, gt=0)
    keepalive: int = Field(default=DEFAULT_KEEPALIVE, gt=0)
    log_level: str = DEFAULT_LOG_LEVEL

    def redacted(self) -> dict:
        """Return a dump of the config safe for logging."""
        data = self.model_dump()
        try:
            address = parse_broker_url(self.broker_url)
        except ValueError:
            return data
        if address.password:
            data["broker_url"] = self.broker_url.replace(address.password, "********")
        return data


# ------------------------------------------------------------------------------------
# Environment helpers
# ------------------------------------------------------------------------------------

def _get_env(environ: Mapping[str, str], key: str, default: str) -> str:
    value = environ.get(key, "")
    return value if value != "" else default


def _get_env_number(environ: Mapping[str, str], key: str, default, cast=int, minimum=None, maximum=None):
    """Parse a numeric override, falling back to the default when malformed or out of range."""
    raw = environ.get(key, "")
    if raw == "":
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.debug(f"Ignoring malformed value for {key}: {raw!r}")
        return default
    if isinstance(value, float) and not math.isfinite(value):
        logger.debug(f"Ignoring non-finite value for {key}: {raw!r}")
        return default
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        logger.debug(f"Ignoring out-of-range value for {key}: {raw!r}")
        return default
    return value


def _parse_topics(raw: str) -> tuple[str, ...]:
    topics = tuple(t.strip() for t in raw.split(",") if t.strip())
    return topics or DEFAULT_TOPICS


def load_config(environ: Mapping[str, str] | None = None) -> ConfigModel:
    """
    Build the configuration from environment variables.

    Missing or malformed values are replaced by their defaults; this never raises.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        ConfigModel: The populated configuration object
    """
    if environ is None:
        environ = os.environ

    reconnect_delay = _get_env_number(
        environ, "RECONNECT_DELAY_SECONDS", DEFAULT_RECONNECT_DELAY, cast=float, minimum=1e-3, maximum=MAX_DELAY_SECONDS
    )
    max_reconnect_delay = _get_env_number(
        environ, "MAX_RECONNECT_DELAY_SECONDS", DEFAULT_MAX_RECONNECT_DELAY, cast=float, minimum=1e-3, maximum=MAX_DELAY_SECONDS
    )
    if max_reconnect_delay < reconnect_delay:
        max_reconnect_delay = reconnect_delay

    log_level = _get_env(environ, "LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    if log_level not in logging.getLevelNamesMapping():
        log_level = DEFAULT_LOG_LEVEL

    return ConfigModel(
        broker_url=_get_env(environ, "MQTT_BROKER_URL", DEFAULT_BROKER_URL),
        client_id=_get_env(environ, "MQTT_CLIENT_ID", DEFAULT_CLIENT_ID),
        topics=_parse_topics(_get_env(environ, "MQTT_TOPICS", ",".join(DEFAULT_TOPICS))),
        metrics_port=_get_env_number(environ, "METRICS_PORT", DEFAULT_METRICS_PORT, minimum=1, maximum=65535),
        reconnect_delay=reconnect_delay,
        max_reconnect_delay=max_reconnect_delay,
        keepalive=_get_env_number(environ, "MQTT_KEEPALIVE_SECONDS", DEFAULT_KEEPALIVE, minimum=1),
        log_level=log_level,
    )


def configure_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Install a single stream handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream = logging.StreamHandler()
    stream.setLevel(level)
    stream.setFormatter(formatter)
    root_logger.addHandler(stream)
