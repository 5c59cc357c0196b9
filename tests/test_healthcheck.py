"""
Tests for the healthcheck module.

Verifies the probe logic used by Docker HEALTHCHECK.
"""

import json
from unittest.mock import MagicMock, patch
import urllib.error

import healthcheck


def _mock_response(body, status=200):
    response = MagicMock()
    response.status = status
    response.read.return_value = body if isinstance(body, bytes) else json.dumps(body).encode()
    response.__enter__ = lambda self: self
    response.__exit__ = lambda self, *args: None
    return response


class TestProbe:
    """Tests for the probe function."""

    @patch("healthcheck.urllib.request.urlopen")
    def test_healthy(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"status": "healthy", "mqtt_connected": True})
        assert healthcheck.probe("http://x/health") is True

    @patch("healthcheck.urllib.request.urlopen")
    def test_disconnected_still_alive(self, mock_urlopen):
        """A broker outage alone does not fail the liveness probe."""
        mock_urlopen.return_value = _mock_response({"status": "unhealthy", "mqtt_connected": False})
        assert healthcheck.probe("http://x/health") is True

    @patch("healthcheck.urllib.request.urlopen")
    def test_require_connected(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response({"status": "unhealthy", "mqtt_connected": False})
        assert healthcheck.probe("http://x/health", require_connected=True) is False

    @patch("healthcheck.urllib.request.urlopen", side_effect=urllib.error.URLError("refused"))
    def test_unreachable(self, mock_urlopen):
        assert healthcheck.probe("http://x/health") is False

    @patch("healthcheck.urllib.request.urlopen")
    def test_invalid_body(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(b"<html>")
        assert healthcheck.probe("http://x/health") is False


class TestMain:
    def test_url_from_env(self, monkeypatch):
        monkeypatch.setenv("METRICS_PORT", "9100")
        assert healthcheck.health_url() == "http://127.0.0.1:9100/health"

    def test_url_bad_env(self, monkeypatch):
        monkeypatch.setenv("METRICS_PORT", "nope")
        assert healthcheck.health_url() == "http://127.0.0.1:8888/health"

    def test_exit_codes(self, mocker):
        probe = mocker.patch("healthcheck.probe", return_value=True)
        assert healthcheck.main(["--port", "1234", "--require-connected"]) == 0
        probe.assert_called_once_with("http://127.0.0.1:1234/health", True, healthcheck.DEFAULT_TIMEOUT)

        probe.return_value = False
        assert healthcheck.main([]) == 1
