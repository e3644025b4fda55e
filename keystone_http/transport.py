"""
Keystone HTTP Transport

httpx-backed transport. Every failure to complete an exchange, including
an abort, is raised as TransportError; the executor decides whether that
means "network" or "cancelled".
"""

import asyncio
import logging
from typing import Dict, Optional

import httpx

from .abort import CancellationToken
from .types import TransportResponse


logger = logging.getLogger("keystone_http")


class TransportError(Exception):
    """The transport could not complete the exchange."""

    def __init__(self, message: str, aborted: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.aborted = aborted


class HttpxTransport:
    """Transport over a lazily created ``httpx.AsyncClient``."""

    def __init__(
        self,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = timeout
        self._http_client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def send(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        token: Optional[CancellationToken] = None,
    ) -> TransportResponse:
        """Perform one HTTP exchange, aborting it if ``token`` fires first."""
        if token is not None and token.cancelled:
            raise TransportError("Request aborted before dispatch", aborted=True)

        request = asyncio.ensure_future(self._request(url, method, headers, body))
        if token is None:
            return await request

        abort = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({request, abort}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            request.cancel()
            abort.cancel()
            raise

        if request.done():
            # Completed before the signal was observed: keep the real result
            abort.cancel()
            return request.result()

        request.cancel()
        try:
            await request
        except (asyncio.CancelledError, TransportError):
            pass
        raise TransportError("Request aborted", aborted=True)

    async def _request(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> TransportResponse:
        try:
            response = await self._get_client().request(
                method=method,
                url=url,
                headers=headers,
                content=body,
            )
        except httpx.TimeoutException:
            raise TransportError(f"Request timeout after {self._timeout}s")
        except httpx.RequestError as e:
            raise TransportError(str(e) or e.__class__.__name__)

        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()
