from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureKind(str, Enum):
    TIMEOUT = "Timeout"
    SERVER_ERROR = "ServerError"
    NETWORK_UNREACHABLE = "NetworkUnreachable"
    UNEXPECTED_FORMAT = "UnexpectedFormat"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class FetchFailure:
    """Classified reason the last fetch cycle for a device failed."""

    kind: FailureKind
    status: int | None = None
    message: str | None = None

    def describe(self) -> str:
        if self.kind is FailureKind.TIMEOUT:
            return "Request timed out"
        if self.kind is FailureKind.SERVER_ERROR:
            return f"Server responded with HTTP {self.status}"
        if self.kind is FailureKind.NETWORK_UNREACHABLE:
            return "Device is unreachable"
        if self.kind is FailureKind.UNEXPECTED_FORMAT:
            return "Response body is not text"
        return f"Unknown error: {self.message or 'no details'}"

    def to_payload(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "status": self.status,
            "message": self.describe(),
        }


class TransportError(Exception):
    kind = FailureKind.UNKNOWN

    def failure(self) -> FetchFailure:
        return FetchFailure(kind=self.kind, message=str(self) or None)


class TransportTimeout(TransportError):
    kind = FailureKind.TIMEOUT


class TransportServerError(TransportError):
    kind = FailureKind.SERVER_ERROR

    def __init__(self, status: int, message: str | None = None) -> None:
        super().__init__(message or f"HTTP {status}")
        self.status = status

    def failure(self) -> FetchFailure:
        return FetchFailure(kind=self.kind, status=self.status, message=str(self))


class TransportNetworkError(TransportError):
    kind = FailureKind.NETWORK_UNREACHABLE


class TransportFormatError(TransportError):
    kind = FailureKind.UNEXPECTED_FORMAT


class TransportUnknown(TransportError):
    kind = FailureKind.UNKNOWN


def classify_exception(exc: BaseException) -> FetchFailure:
    """Map any exception raised by a fetch callable onto a FetchFailure."""
    if isinstance(exc, TransportError):
        return exc.failure()
    return FetchFailure(kind=FailureKind.UNKNOWN, message=str(exc) or exc.__class__.__name__)
