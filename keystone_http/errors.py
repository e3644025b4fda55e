"""
Keystone HTTP Error Classes

Every failure surfaced to a consumer is an APIError carrying one of three
kinds: network, server or cancelled.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .types import ErrorKind


class APIError(Exception):
    """Base error class for Keystone HTTP."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.payload = payload
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(kind={self.kind.value!r}, "
            f"status_code={self.status_code!r}, message={self.message!r})"
        )


class NetworkError(APIError):
    """The exchange could not complete (DNS, refused connection, timeout)."""

    def __init__(self, message: str = "Network error: Unable to connect to server"):
        super().__init__(message, ErrorKind.NETWORK)


class ServerError(APIError):
    """The server answered with a non-success status code."""

    def __init__(self, message: str, status_code: int, payload: Any = None):
        super().__init__(
            message,
            ErrorKind.SERVER,
            status_code,
            payload if payload is not None else {},
        )


class RequestCancelledError(APIError):
    """The call was superseded or explicitly cancelled."""

    def __init__(self, message: str = "Request was cancelled"):
        super().__init__(message, ErrorKind.CANCELLED)


class TokenRefreshError(APIError):
    """
    Credential refresh failed.

    Keeps the kind and status of the underlying failure so callers can tell
    a rejected refresh token from an unreachable backend, while both take
    the same clear-credentials path.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.NETWORK,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message, kind, status_code, payload)

    @classmethod
    def from_error(cls, error: APIError) -> "TokenRefreshError":
        """Wrap a classified refresh failure."""
        return cls(
            f"Token refresh failed: {error.message}",
            error.kind,
            error.status_code,
            error.payload,
        )


class ConfigurationError(APIError):
    """Configuration error."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.NETWORK)


def is_api_error(error: Any) -> bool:
    """Check if error is an APIError."""
    return isinstance(error, APIError)


def is_cancelled_error(error: Any) -> bool:
    """Check if error only means the call was superseded."""
    return isinstance(error, APIError) and error.kind is ErrorKind.CANCELLED
