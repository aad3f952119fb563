from __future__ import annotations

import logging
import socket
from urllib.error import HTTPError, URLError
from urllib.parse import urlsplit, urlunsplit
from urllib.request import Request, urlopen

from hostpulse.config import DeviceConfig
from hostpulse.errors import (
    TransportFormatError,
    TransportNetworkError,
    TransportServerError,
    TransportTimeout,
    TransportUnknown,
)
from hostpulse.logging_utils import TRACE_LEVEL

DEFAULT_EXPORTER_PORT = 9182
METRICS_PATH = "/metrics"
TARGET_HEADER = "X-Target-URL"


def metrics_url(address: str) -> str:
    """Normalize a device address to its exporter metrics endpoint.

    ``host`` becomes ``http://host:9182/metrics``; an explicit scheme or port
    is kept, and any path is replaced with ``/metrics``.
    """
    address = address.strip()
    if "://" not in address:
        address = f"http://{address}"
    parts = urlsplit(address)
    if not parts.hostname:
        raise ValueError(f"Invalid device address: {address}")
    netloc = parts.netloc
    if parts.port is None:
        netloc = f"{netloc}:{DEFAULT_EXPORTER_PORT}"
    return urlunsplit((parts.scheme, netloc, METRICS_PATH, "", ""))


def _is_text(content_type: str | None) -> bool:
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or media_type == "application/openmetrics-text"


class HttpFetcher:
    """Fetches a device's exposition body over HTTP."""

    def __init__(self, device: DeviceConfig, timeout_ms: int = 10000) -> None:
        self.device = device
        self.timeout_s = timeout_ms / 1000.0
        self.target_url = metrics_url(device.address)
        self.logger = logging.getLogger(self.__class__.__name__)

    def request(self) -> Request:
        if self.device.proxy_url:
            request = Request(self.device.proxy_url)
        else:
            request = Request(self.target_url)
        if self.device.send_target_header or self.device.proxy_url:
            request.add_header(TARGET_HEADER, self.target_url)
        request.add_header("Accept", "text/plain")
        return request

    def __call__(self) -> str:
        return self.fetch()

    def fetch(self) -> str:
        request = self.request()
        self.logger.debug("Fetching metrics for %s from %s.", self.device.name, request.full_url)
        try:
            with urlopen(request, timeout=self.timeout_s) as response:
                content_type = response.headers.get("Content-Type")
                raw = response.read()
        except HTTPError as exc:
            raise TransportServerError(exc.code, f"HTTP {exc.code}: {exc.reason}") from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise TransportTimeout(str(exc.reason)) from exc
            raise TransportNetworkError(str(exc.reason)) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise TransportTimeout(str(exc)) from exc
        except OSError as exc:
            raise TransportNetworkError(str(exc)) from exc
        except ValueError as exc:
            raise TransportUnknown(str(exc)) from exc

        if not _is_text(content_type):
            raise TransportFormatError(f"Unexpected content type {content_type}")
        try:
            payload = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TransportFormatError("Response body is not valid UTF-8") from exc
        if self.logger.isEnabledFor(TRACE_LEVEL):
            self.logger.log(TRACE_LEVEL, "Raw exposition payload: %s", payload)
        return payload
