"""
Keystone HTTP Client

Consumer-facing async client. Wires a credential store, a transport, the
interceptor chain, the abort registry and the token refresh coordinator
into one explicitly constructed object.
"""

import logging
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

from .abort import AbortRegistry
from .errors import ConfigurationError
from .executor import RequestExecutor
from .interceptors import (
    AuthInterceptor,
    InterceptorChain,
    RequestHook,
    RequestStep,
    ResponseHook,
    ResponseStep,
)
from .refresh import TokenRefreshCoordinator
from .storage import MemoryStorage
from .transport import HttpxTransport
from .types import ClientConfig, HttpMethod, RequestSpec, TokenStorage


logger = logging.getLogger("keystone_http")


class ApiClient:
    """
    Keystone API Client - async SDK entry point.

    Attaches bearer tokens, refreshes them at most once per burst of 401s,
    and lets calls supersede earlier calls to the same endpoint.
    """

    def __init__(self, config: ClientConfig) -> None:
        """Initialize the client."""
        self._validate_config(config)

        self._debug = config.debug
        self._refresh_endpoint = config.refresh_endpoint
        self._storage: TokenStorage = config.storage if config.storage else MemoryStorage()
        self._owns_transport = config.transport is None
        self._transport = config.transport or HttpxTransport(timeout=config.timeout)

        self._chain = InterceptorChain()
        self._aborts = AbortRegistry()
        self._executor = RequestExecutor(
            base_url=config.base_url,
            transport=self._transport,
            chain=self._chain,
            aborts=self._aborts,
            default_headers=config.default_headers,
            debug=config.debug,
        )
        self._coordinator = TokenRefreshCoordinator(
            storage=self._storage,
            transport=self._transport,
            refresh_url=lambda: self._executor.resolve_url(self._refresh_endpoint),
            debug=config.debug,
        )
        self._executor.coordinator = self._coordinator

        self._chain.add_request_step(AuthInterceptor(self._storage))

        self._log(f"ApiClient initialized (base_url={self._executor.base_url})")

    def _validate_config(self, config: ClientConfig) -> None:
        """Validate configuration."""
        if not config.base_url:
            raise ConfigurationError("base_url is required")
        if urlparse(config.base_url).scheme not in ("http", "https"):
            raise ConfigurationError(
                "Invalid base_url. Expected an http:// or https:// URL"
            )
        if not config.refresh_endpoint:
            raise ConfigurationError("refresh_endpoint is required")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[Keystone] {message}", *args)

    # =========================================================================
    # Request Methods
    # =========================================================================

    async def call_api(
        self,
        endpoint: str,
        method: HttpMethod = "GET",
        data: Any = None,
        is_auth: bool = True,
        abort_previous: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Perform one API call.

        Args:
            endpoint: Path joined to the base URL, or an absolute URL. Also
                the key used to supersede earlier calls.
            method: HTTP method
            data: JSON body (sent for POST, PUT and PATCH only)
            is_auth: Attach the access token and refresh it on 401
            abort_previous: Cancel the in-flight call to the same endpoint
            headers: Extra headers for this call

        Returns:
            Parsed JSON response body

        Raises:
            NetworkError, ServerError, RequestCancelledError, TokenRefreshError
        """
        spec = RequestSpec(
            endpoint_key=endpoint,
            method=method,
            data=data,
            requires_auth=is_auth,
            abort_previous=abort_previous,
            headers=dict(headers or {}),
        )
        return await self._executor.execute(spec)

    async def get(self, endpoint: str, **options: Any) -> Any:
        return await self.call_api(endpoint, method="GET", **options)

    async def post(self, endpoint: str, data: Any = None, **options: Any) -> Any:
        return await self.call_api(endpoint, method="POST", data=data, **options)

    async def put(self, endpoint: str, data: Any = None, **options: Any) -> Any:
        return await self.call_api(endpoint, method="PUT", data=data, **options)

    async def patch(self, endpoint: str, data: Any = None, **options: Any) -> Any:
        return await self.call_api(endpoint, method="PATCH", data=data, **options)

    async def delete(self, endpoint: str, **options: Any) -> Any:
        return await self.call_api(endpoint, method="DELETE", **options)

    # =========================================================================
    # Interceptors
    # =========================================================================

    def add_request_interceptor(self, step: Union[RequestStep, RequestHook]) -> RequestStep:
        """Append a request step; it runs after the ones already registered."""
        return self._chain.add_request_step(step)

    def add_response_interceptor(self, step: Union[ResponseStep, ResponseHook]) -> ResponseStep:
        """Append a response step; it runs after the ones already registered."""
        return self._chain.add_response_step(step)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_request(self, endpoint: str) -> bool:
        """Cancel the in-flight ``abort_previous`` call for ``endpoint``."""
        cancelled = self._aborts.cancel(endpoint)
        if cancelled:
            self._log(f"Cancelled request for {endpoint}")
        return cancelled

    def cancel_all_requests(self) -> int:
        """Cancel every in-flight ``abort_previous`` call."""
        count = self._aborts.cancel_all()
        self._log(f"Cancelled {count} in-flight request(s)")
        return count

    # =========================================================================
    # Credentials
    # =========================================================================

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        """Store credentials obtained from a login flow."""
        self._storage.set_tokens(access_token, refresh_token)

    def is_authenticated(self) -> bool:
        """Check if an access token is stored."""
        tokens = self._storage.get_tokens()
        return bool(tokens and tokens.access_token)

    def logout(self) -> None:
        """Cancel in-flight calls and clear stored credentials."""
        self._log("Logout")
        self.cancel_all_requests()
        self._storage.clear_tokens()

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_base_url(self) -> str:
        return self._executor.base_url

    def set_base_url(self, url: str) -> None:
        if urlparse(url).scheme not in ("http", "https"):
            raise ConfigurationError("Invalid base_url. Expected an http:// or https:// URL")
        self._executor.base_url = url.rstrip("/")

    def get_default_headers(self) -> Dict[str, str]:
        """Return a copy of the headers sent with every request."""
        return dict(self._executor.default_headers)

    def set_default_headers(self, headers: Dict[str, str]) -> None:
        """Merge ``headers`` into the default headers."""
        self._executor.default_headers.update(headers)

    @property
    def storage(self) -> TokenStorage:
        return self._storage

    @property
    def coordinator(self) -> TokenRefreshCoordinator:
        return self._coordinator

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Cancel in-flight calls and close the transport this client created."""
        self._aborts.cancel_all()
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def create_api_client(config: ClientConfig) -> ApiClient:
    """Create a new API client."""
    return ApiClient(config)
