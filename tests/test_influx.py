"""
Tests for the InfluxDB sink
"""

import logging
import pytest
import requests
from unittest.mock import Mock, patch

from thermal_watchdog.metrics.influx import InfluxSink


class TestInfluxSink:
    """Test HTTP submission"""

    def test_write_url_and_params(self):
        """Test credentials and database are sent as query parameters"""
        sink = InfluxSink("http://localhost:8086/", "twd", "admin", "influx")
        with patch("requests.post") as mock_post:
            mock_post.return_value = Mock(status_code=204)
            sink.submit("thermal_watchdog cpu_usage=1.0")

        mock_post.assert_called_once_with(
            "http://localhost:8086/write",
            params={"db": "twd", "u": "admin", "p": "influx"},
            data=b"thermal_watchdog cpu_usage=1.0",
            timeout=InfluxSink.TIMEOUT
        )

    def test_optional_credentials(self):
        """Test user and password are omitted when not configured"""
        sink = InfluxSink("http://influx:8086", "twd")
        assert sink.params == {"db": "twd"}

    def test_server_error_logged(self, caplog):
        """Test non-2xx responses are logged, not raised"""
        sink = InfluxSink("http://localhost:8086", "twd")
        with patch("requests.post") as mock_post:
            mock_post.return_value = Mock(status_code=404, text="database not found")
            with caplog.at_level(logging.ERROR):
                sink.submit("thermal_watchdog cpu_usage=1.0")
        assert "404" in caplog.text

    def test_connection_error_logged(self, caplog):
        """Test transport failures are logged, not raised"""
        sink = InfluxSink("http://localhost:8086", "twd")
        with patch("requests.post", side_effect=requests.ConnectionError("refused")):
            with caplog.at_level(logging.ERROR):
                sink.submit("thermal_watchdog cpu_usage=1.0")
        assert "Unable to submit metrics" in caplog.text
