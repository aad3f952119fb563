"""Tests for the HTTP exposition fetcher."""
from __future__ import annotations

import socket
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from hostpulse.config import DeviceConfig
from hostpulse.errors import (
    TransportFormatError,
    TransportNetworkError,
    TransportServerError,
    TransportTimeout,
)
from hostpulse.fetcher import TARGET_HEADER, HttpFetcher, metrics_url


def _response(body: bytes, content_type: str | None = "text/plain; version=0.0.4; charset=utf-8"):
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.headers = {"Content-Type": content_type} if content_type else {}
    response.read.return_value = body
    return response


@pytest.fixture
def device():
    """Create a directly reachable device."""
    return DeviceConfig(name="workstation", address="192.168.1.20")


class TestMetricsUrl:
    """Test device address normalization."""

    @pytest.mark.parametrize(
        ("address", "expected"),
        [
            ("192.168.1.20", "http://192.168.1.20:9182/metrics"),
            ("host.lan:9100", "http://host.lan:9100/metrics"),
            ("https://host.lan", "https://host.lan:9182/metrics"),
            ("http://host.lan:9182/some/path?x=1", "http://host.lan:9182/metrics"),
            ("  [::1]:9182 ", "http://[::1]:9182/metrics"),
        ],
    )
    def test_metrics_url_normalization(self, address, expected):
        """Test scheme, port and path defaults."""
        assert metrics_url(address) == expected

    def test_metrics_url_rejects_empty_host(self):
        """Test that an address without a host is rejected."""
        with pytest.raises(ValueError):
            metrics_url("http://")


class TestHttpFetcher:
    """Test fetching and transport error mapping."""

    def test_fetch_returns_text(self, device):
        """Test a successful fetch."""
        fetcher = HttpFetcher(device, timeout_ms=5000)

        with patch("hostpulse.fetcher.urlopen", return_value=_response(b"windows_cs_logical_processors 8\n")) as mock_open:
            body = fetcher()

        assert body == "windows_cs_logical_processors 8\n"
        request = mock_open.call_args.args[0]
        assert request.full_url == "http://192.168.1.20:9182/metrics"
        assert mock_open.call_args.kwargs["timeout"] == 5.0

    def test_missing_content_type_is_treated_as_text(self, device):
        """Test a response without a Content-Type header."""
        with patch("hostpulse.fetcher.urlopen", return_value=_response(b"ok", content_type=None)):
            assert HttpFetcher(device).fetch() == "ok"

    def test_http_error_maps_to_server_error(self, device):
        """Test that HTTP errors carry their status code."""
        error = HTTPError("http://192.168.1.20:9182/metrics", 503, "Service Unavailable", hdrs=None, fp=None)

        with patch("hostpulse.fetcher.urlopen", side_effect=error):
            with pytest.raises(TransportServerError) as excinfo:
                HttpFetcher(device).fetch()

        assert excinfo.value.status == 503
        assert excinfo.value.failure().status == 503

    def test_timeout_maps_to_transport_timeout(self, device):
        """Test a connect timeout."""
        with patch("hostpulse.fetcher.urlopen", side_effect=URLError(socket.timeout("timed out"))):
            with pytest.raises(TransportTimeout):
                HttpFetcher(device).fetch()

    def test_read_timeout_maps_to_transport_timeout(self, device):
        """Test a read timeout."""
        with patch("hostpulse.fetcher.urlopen", side_effect=TimeoutError("read timed out")):
            with pytest.raises(TransportTimeout):
                HttpFetcher(device).fetch()

    def test_connection_refused_maps_to_network_error(self, device):
        """Test an unreachable host."""
        with patch("hostpulse.fetcher.urlopen", side_effect=URLError(ConnectionRefusedError(111, "refused"))):
            with pytest.raises(TransportNetworkError):
                HttpFetcher(device).fetch()

    def test_binary_body_maps_to_format_error(self, device):
        """Test a non-text content type."""
        with patch("hostpulse.fetcher.urlopen", return_value=_response(b"\x89PNG", "image/png")):
            with pytest.raises(TransportFormatError):
                HttpFetcher(device).fetch()

    def test_undecodable_body_maps_to_format_error(self, device):
        """Test a body that is not valid UTF-8."""
        with patch("hostpulse.fetcher.urlopen", return_value=_response(b"\xff\xfe\xfa")):
            with pytest.raises(TransportFormatError):
                HttpFetcher(device).fetch()


class TestTargetHeader:
    """Test proxy mode and the target URL header."""

    def test_proxy_mode_sends_target_header(self):
        """Test that proxy requests name the real exporter URL."""
        device = DeviceConfig(
            name="workstation",
            address="10.0.0.5",
            proxy_url="http://localhost:5173/api/metrics",
        )
        fetcher = HttpFetcher(device)

        request = fetcher.request()

        assert request.full_url == "http://localhost:5173/api/metrics"
        assert request.get_header(TARGET_HEADER.capitalize()) == "http://10.0.0.5:9182/metrics"

    def test_direct_mode_can_send_target_header(self, device):
        """Test that direct requests send the header only when asked."""
        plain = HttpFetcher(device).request()
        flagged = HttpFetcher(
            DeviceConfig(name="workstation", address="192.168.1.20", send_target_header=True)
        ).request()

        assert not plain.has_header(TARGET_HEADER.capitalize())
        assert flagged.has_header(TARGET_HEADER.capitalize())
