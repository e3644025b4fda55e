"""
Keystone HTTP
keystone-http

An async HTTP client core with bearer-token authentication, single-flight
token refresh, per-endpoint request supersession and a three-kind error
taxonomy (network, server, cancelled).
"""

from .client import ApiClient, create_api_client
from .abort import AbortRegistry, CancellationToken
from .interceptors import (
    AuthInterceptor,
    InterceptorChain,
    RequestStep,
    ResponseStep,
)
from .refresh import QueuedWaiter, TokenRefreshCoordinator
from .executor import RequestExecutor
from .transport import HttpxTransport, TransportError
from .types import (
    ClientConfig,
    ErrorKind,
    HttpMethod,
    PreparedRequest,
    RefreshState,
    RequestSpec,
    TokenPair,
    TokenStorage,
    Transport,
    TransportResponse,
)
from .errors import (
    APIError,
    NetworkError,
    ServerError,
    RequestCancelledError,
    TokenRefreshError,
    ConfigurationError,
    is_api_error,
    is_cancelled_error,
)
from .storage import MemoryStorage, FileStorage

__version__ = "0.1.0"
__all__ = [
    # Client
    "ApiClient",
    "create_api_client",
    # Core
    "AbortRegistry",
    "CancellationToken",
    "AuthInterceptor",
    "InterceptorChain",
    "RequestStep",
    "ResponseStep",
    "QueuedWaiter",
    "TokenRefreshCoordinator",
    "RequestExecutor",
    "HttpxTransport",
    "TransportError",
    # Types
    "ClientConfig",
    "ErrorKind",
    "HttpMethod",
    "PreparedRequest",
    "RefreshState",
    "RequestSpec",
    "TokenPair",
    "TokenStorage",
    "Transport",
    "TransportResponse",
    # Errors
    "APIError",
    "NetworkError",
    "ServerError",
    "RequestCancelledError",
    "TokenRefreshError",
    "ConfigurationError",
    "is_api_error",
    "is_cancelled_error",
    # Storage
    "MemoryStorage",
    "FileStorage",
]
