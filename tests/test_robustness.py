"""
End-to-end robustness tests: MQTT callbacks feeding the store while HTTP clients scrape it.
"""

import json
import threading
import urllib.request

import pytest

from conftest import TOPIC_100, TOPIC_101
from exposure_server import ExposureServer


@pytest.fixture
def server(context):
    srv = ExposureServer(context.store, port=0, host="127.0.0.1")
    srv.start()
    yield srv
    srv.stop(timeout=2)


def _get(server, path):
    with urllib.request.urlopen(f"http://127.0.0.1:{server.port}{path}", timeout=5) as response:
        return response.read().decode("utf-8")


def test_health_tracks_connection_events(manager, server, mock_mqtt_client):
    manager.on_connect(mock_mqtt_client, None, None, 0, None)
    assert json.loads(_get(server, "/health"))["mqtt_connected"] is True

    manager.on_disconnect(mock_mqtt_client, None, None, 7, None)
    health = json.loads(_get(server, "/health"))
    assert health["status"] == "unhealthy"
    assert health["mqtt_connected"] is False

    metrics = _get(server, "/metrics")
    assert "mqtt_connection_status 0.0" in metrics


def test_scrapes_during_message_flood(manager, server, make_message):
    """Scrapes running alongside message delivery always succeed and end consistent."""
    stop = threading.Event()
    failures = []

    def deliver():
        i = 0
        while not stop.is_set():
            manager.on_message(None, None, make_message(TOPIC_100, json.dumps({"id": 100, "tC": float(i)})))
            manager.on_message(None, None, make_message(TOPIC_101, "garbage"))
            i += 1

    def scrape():
        for _ in range(20):
            try:
                _get(server, "/metrics")
            except Exception as e:
                failures.append(e)

    producer = threading.Thread(target=deliver)
    scrapers = [threading.Thread(target=scrape) for _ in range(4)]
    producer.start()
    for t in scrapers:
        t.start()
    for t in scrapers:
        t.join(10)
    stop.set()
    producer.join(5)

    assert failures == []
    snapshot = manager.app_context.store.snapshot()
    assert TOPIC_101 not in snapshot.temperatures
    assert snapshot.errors["json_parse_error"] >= 1
    final = _get(server, "/metrics")
    assert f'mqtt_temperature_celsius{{topic="{TOPIC_100}"}} {snapshot.temperatures[TOPIC_100]}' in final
