"""
Keystone HTTP Type Definitions

Request/response value objects, the credential store and transport
interfaces, and client configuration.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Literal,
    Optional,
    Protocol,
    runtime_checkable,
)

if TYPE_CHECKING:
    from .abort import CancellationToken


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

# Methods that carry a JSON body
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

DEFAULT_REFRESH_ENDPOINT = "/api/v1/auth/refresh/"


class ErrorKind(str, Enum):
    """Closed taxonomy of failures reported to consumers."""
    NETWORK = "network"
    SERVER = "server"
    CANCELLED = "cancelled"


class RefreshState(str, Enum):
    """Token refresh coordinator states."""
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh token pair held by a credential store."""

    access_token: str
    refresh_token: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenPair":
        """Create from dictionary."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }


@runtime_checkable
class TokenStorage(Protocol):
    """Credential store interface for custom implementations."""

    def get_tokens(self) -> Optional[TokenPair]:
        """Get the stored token pair, or None when logged out."""
        ...

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store a new token pair (last write wins)."""
        ...

    def clear_tokens(self) -> None:
        """Clear all stored tokens."""
        ...


@dataclass
class TransportResponse:
    """Raw outcome of one transport call."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class Transport(Protocol):
    """HTTP stack interface. Raises TransportError when the exchange fails."""

    async def send(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        token: Optional["CancellationToken"] = None,
    ) -> TransportResponse:
        ...

    async def close(self) -> None:
        ...


@dataclass(frozen=True)
class RequestSpec:
    """Immutable description of one logical call."""

    endpoint_key: str
    method: HttpMethod = "GET"
    data: Any = None
    requires_auth: bool = True
    abort_previous: bool = False
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PreparedRequest:
    """
    Effective request produced from a RequestSpec.

    Request interceptors return a new PreparedRequest rather than
    mutating the one they receive.
    """

    url: str
    method: str
    headers: Dict[str, str]
    body: Optional[bytes]
    spec: RequestSpec

    def with_header(self, name: str, value: str) -> "PreparedRequest":
        """Return a copy with one header set."""
        return replace(self, headers={**self.headers, name: value})

    def with_url(self, url: str) -> "PreparedRequest":
        return replace(self, url=url)


@dataclass
class ClientConfig:
    """Client configuration options."""

    # Backend base URL; endpoints starting with "http" bypass it
    base_url: str
    # Refresh endpoint path (POST {"refresh": <token>})
    refresh_endpoint: str = DEFAULT_REFRESH_ENDPOINT
    # Request timeout in seconds for the default transport (default: 30)
    timeout: float = 30.0
    # Headers sent with every request
    default_headers: Optional[Dict[str, str]] = None
    # Custom credential store (default: None, uses MemoryStorage)
    storage: Optional[TokenStorage] = None
    # Custom transport (default: None, uses HttpxTransport)
    transport: Optional[Transport] = None
    # Enable debug logging (default: False)
    debug: bool = False
