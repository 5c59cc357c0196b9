"""
Shared pytest fixtures for MQTT Exporter tests.
"""

import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add the source directory to the path so we can import the exporter modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "rootfs", "usr", "src")))

import paho.mqtt.client as mqtt

from config import ConfigModel
import state as state_module

TOPIC_100 = "shellyplusuni/status/temperature:100"
TOPIC_101 = "shellyplusuni/status/temperature:101"
TOPIC_102 = "shellyplusuni/status/temperature:102"


@pytest.fixture
def test_config():
    """Configuration with three topics and short delays."""
    return ConfigModel(
        broker_url="tcp://broker.local:1883",
        client_id="test-exporter",
        topics=(TOPIC_100, TOPIC_101, TOPIC_102),
        metrics_port=18888,
        reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )


@pytest.fixture
def context(test_config):
    """Fresh application context with an empty metric store."""
    return state_module.AppContext(test_config)


@pytest.fixture
def mock_mqtt_client():
    """A fake paho client whose subscribe calls succeed with increasing message ids."""
    client = MagicMock()
    mids = iter(range(1, 1000))
    client.subscribe.side_effect = lambda topic, qos=0: (mqtt.MQTT_ERR_SUCCESS, next(mids))
    return client


@pytest.fixture
def client_factory(mock_mqtt_client):
    """Client factory returning the fake client."""
    return MagicMock(return_value=mock_mqtt_client)


@pytest.fixture
def stopper():
    return threading.Event()


@pytest.fixture
def manager(context, stopper, client_factory):
    """ConnectionManager wired to the fake client. Not started."""
    from mqtt_handler import ConnectionManager

    return ConnectionManager(context, stopper, client_factory=client_factory)


@pytest.fixture
def make_message():
    """Build a fake paho MQTTMessage."""

    def _make(topic, payload):
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return MagicMock(topic=topic, payload=payload)

    return _make


@pytest.fixture
def threading_helpers():
    """Helper utilities for testing threaded code."""

    class ThreadingHelpers:
        @staticmethod
        def wait_for(predicate, timeout=5.0, interval=0.01):
            """Poll until predicate() is truthy or the timeout expires."""
            event = threading.Event()
            deadline = timeout
            while deadline > 0:
                if predicate():
                    return True
                event.wait(interval)
                deadline -= interval
            return bool(predicate())

        @staticmethod
        def wait_for_thread(thread, timeout=5):
            """Wait for a thread to finish with timeout."""
            thread.join(timeout=timeout)
            return not thread.is_alive()

    return ThreadingHelpers()
