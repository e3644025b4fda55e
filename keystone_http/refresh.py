"""
Keystone HTTP Token Refresh Coordinator

Guarantees at most one refresh in flight. The first request to see a 401
owns the refresh; requests that see a 401 while it runs are queued and
retried in arrival order once new credentials are committed, or all
rejected with the same error if the refresh fails.
"""

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

from .abort import CancellationToken
from .classifier import classify_exception, classify_response, parse_json_body
from .errors import APIError, RequestCancelledError, TokenRefreshError
from .transport import TransportError
from .types import RefreshState, RequestSpec, TokenPair, TokenStorage, Transport


logger = logging.getLogger("keystone_http")

RetryCallable = Callable[[RequestSpec, Optional[CancellationToken]], Awaitable[Any]]


@dataclass
class QueuedWaiter:
    """A request suspended behind the refresh in progress."""

    future: "asyncio.Future[Any]"
    spec: RequestSpec
    token: Optional[CancellationToken] = None

    @property
    def endpoint_key(self) -> str:
        return self.spec.endpoint_key


class TokenRefreshCoordinator:
    """Single-flight credential refresh plus the queue of waiting requests."""

    def __init__(
        self,
        storage: TokenStorage,
        transport: Transport,
        refresh_url: Callable[[], str],
        debug: bool = False,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._refresh_url = refresh_url
        self._debug = debug

        self._state = RefreshState.IDLE
        self._queue: Deque[QueuedWaiter] = deque()
        self._lock = asyncio.Lock()

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[Keystone] {message}", *args)

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def is_refreshing(self) -> bool:
        return self._state is RefreshState.REFRESHING

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    async def handle_unauthorized(
        self,
        spec: RequestSpec,
        token: Optional[CancellationToken],
        retry: RetryCallable,
    ) -> Any:
        """
        Resolve a 401 for ``spec``.

        Either becomes the refresh owner and retries ``spec`` once with the
        new credentials, or waits in the queue for the owner to retry it.
        ``retry`` must not route a second 401 back here.
        """
        async with self._lock:
            if self._state is RefreshState.REFRESHING:
                waiter = QueuedWaiter(asyncio.get_running_loop().create_future(), spec, token)
                self._queue.append(waiter)
            else:
                self._state = RefreshState.REFRESHING
                waiter = None

        if waiter is not None:
            self._log("Refresh in progress - queued %s", spec.endpoint_key)
            return await waiter.future

        self._log("Starting token refresh for %s", spec.endpoint_key)
        try:
            await self.refresh()
        except TokenRefreshError as error:
            await self._reject_waiters(error)
            raise
        except asyncio.CancelledError:
            self._abandon(RequestCancelledError("Token refresh was interrupted"))
            raise
        except Exception as e:
            # The store failed while discarding credentials
            error = TokenRefreshError.from_error(classify_exception(e))
            await self._reject_waiters(error)
            raise error from e

        self._log("Token refreshed - retrying %s", spec.endpoint_key)
        try:
            return await retry(spec, token)
        finally:
            await self._drain(retry)

    async def refresh(self) -> TokenPair:
        """
        Call the refresh endpoint and commit the new token pair.

        On any failure the credential store is cleared and
        TokenRefreshError is raised.
        """
        try:
            tokens = self._storage.get_tokens()
            refresh_token = tokens.refresh_token if tokens else None
            if not refresh_token:
                raise TokenRefreshError("No refresh token available")

            access_token, new_refresh_token = await self._request_tokens(refresh_token)
            self._storage.set_tokens(access_token, new_refresh_token)
        except TokenRefreshError as error:
            self._discard_credentials(error)
            raise
        except Exception as e:
            error = TokenRefreshError.from_error(classify_exception(e))
            self._discard_credentials(error)
            raise error from e

        return TokenPair(access_token, new_refresh_token)

    def _discard_credentials(self, error: TokenRefreshError) -> None:
        logger.warning("Token refresh failed: %s", error.message)
        self._storage.clear_tokens()

    async def _request_tokens(self, refresh_token: str) -> Tuple[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        body = json.dumps({"refresh": refresh_token}).encode("utf-8")

        try:
            response = await self._transport.send(self._refresh_url(), "POST", headers, body)
        except TransportError as e:
            raise TokenRefreshError.from_error(classify_exception(e))

        if not response.is_success:
            raise TokenRefreshError.from_error(classify_response(response))

        data = parse_json_body(response.body)
        if not isinstance(data, dict):
            data = {}
        access_token = data.get("access") or data.get("access_token")
        if not access_token:
            raise TokenRefreshError("No access token in refresh response")

        # Keep the current refresh token when the server does not rotate it
        return access_token, data.get("refresh") or data.get("refresh_token") or refresh_token

    async def _drain(self, retry: RetryCallable) -> None:
        """Retry queued requests FIFO, then return to IDLE."""
        try:
            while True:
                async with self._lock:
                    if not self._queue:
                        self._state = RefreshState.IDLE
                        return
                    waiter = self._queue.popleft()
                await self._settle(waiter, retry)
        except asyncio.CancelledError:
            self._abandon(RequestCancelledError("Token refresh cycle was interrupted"))
            raise

    async def _settle(self, waiter: QueuedWaiter, retry: RetryCallable) -> None:
        if waiter.future.done():
            return
        if waiter.token is not None and waiter.token.cancelled:
            # Superseded while queued; never replay it
            waiter.future.set_exception(RequestCancelledError())
            return

        self._log("Retrying queued %s", waiter.endpoint_key)
        try:
            result = await retry(waiter.spec, waiter.token)
        except APIError as error:
            if not waiter.future.done():
                waiter.future.set_exception(error)
        except Exception as error:
            if not waiter.future.done():
                waiter.future.set_exception(classify_exception(error, waiter.token))
        else:
            if not waiter.future.done():
                waiter.future.set_result(result)

    async def _reject_waiters(self, error: APIError) -> None:
        async with self._lock:
            self._reject_queue(error)

    def _abandon(self, error: APIError) -> None:
        # Runs from a cancelled owner; without awaiting there is no interleaving
        self._reject_queue(error)

    def _reject_queue(self, error: APIError) -> None:
        waiters = list(self._queue)
        self._queue.clear()
        self._state = RefreshState.IDLE
        for waiter in waiters:
            if not waiter.future.done():
                waiter.future.set_exception(error)
