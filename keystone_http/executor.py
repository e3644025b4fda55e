"""
Keystone HTTP Request Executor

Runs one logical call: build the request, apply interceptors, send it,
hand 401s to the refresh coordinator, classify failures and parse the
result.
"""

import json
import logging
from typing import Any, Dict, Optional

from .abort import AbortRegistry, CancellationToken
from .classifier import classify_exception, classify_response, parse_json_body
from .errors import RequestCancelledError
from .interceptors import InterceptorChain
from .refresh import TokenRefreshCoordinator
from .types import (
    BODY_METHODS,
    PreparedRequest,
    RequestSpec,
    Transport,
    TransportResponse,
)


logger = logging.getLogger("keystone_http")


class RequestExecutor:
    """Executes RequestSpecs against a transport."""

    def __init__(
        self,
        base_url: str,
        transport: Transport,
        chain: InterceptorChain,
        aborts: AbortRegistry,
        coordinator: Optional[TokenRefreshCoordinator] = None,
        default_headers: Optional[Dict[str, str]] = None,
        debug: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_headers: Dict[str, str] = {
            "Content-Type": "application/json",
            **(default_headers or {}),
        }
        self.coordinator = coordinator
        self._transport = transport
        self._chain = chain
        self._aborts = aborts
        self._debug = debug

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[Keystone] {message}", *args)

    def resolve_url(self, endpoint: str) -> str:
        """Absolute URLs pass through; paths are joined to the base URL."""
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}{endpoint}"

    def prepare(self, spec: RequestSpec) -> PreparedRequest:
        """Build the initial request for ``spec`` before interceptors run."""
        body = None
        if spec.data is not None and spec.method in BODY_METHODS:
            body = json.dumps(spec.data).encode("utf-8")

        return PreparedRequest(
            url=self.resolve_url(spec.endpoint_key),
            method=spec.method,
            headers={**self.default_headers, **spec.headers},
            body=body,
            spec=spec,
        )

    async def execute(self, spec: RequestSpec) -> Any:
        """
        Run ``spec`` to completion.

        Returns:
            The parsed JSON body (``{}`` for empty or non-JSON bodies)

        Raises:
            APIError: network, server or cancelled failure
        """
        token = self._aborts.begin(spec.endpoint_key) if spec.abort_previous else None
        try:
            response = await self._send(spec, token)

            if (
                response.status_code == 401
                and spec.requires_auth
                and self.coordinator is not None
            ):
                if token is not None and token.cancelled:
                    # Superseded calls never start a refresh cycle
                    raise RequestCancelledError()
                self._log("401 Unauthorized - token refresh needed for %s", spec.endpoint_key)
                return await self.coordinator.handle_unauthorized(spec, token, self.retry)

            return self._parse(response)
        finally:
            if token is not None:
                self._aborts.end(spec.endpoint_key, token)

    async def retry(self, spec: RequestSpec, token: Optional[CancellationToken]) -> Any:
        """Final attempt after a refresh; a 401 here is returned as a server error."""
        return self._parse(await self._send(spec, token))

    async def _send(
        self,
        spec: RequestSpec,
        token: Optional[CancellationToken],
    ) -> TransportResponse:
        try:
            request = await self._chain.run_request_chain(self.prepare(spec))
            if token is not None and token.cancelled:
                raise RequestCancelledError()

            self._log("API request %s %s", request.method, request.url)
            response = await self._transport.send(
                request.url,
                request.method,
                request.headers,
                request.body,
                token,
            )
            return await self._chain.run_response_chain(response)
        except Exception as error:
            classified = classify_exception(error, token)
            if classified is error:
                raise
            raise classified from error

    def _parse(self, response: TransportResponse) -> Any:
        if not response.is_success:
            raise classify_response(response)
        return parse_json_body(response.body)
