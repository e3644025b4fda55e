"""
Keystone HTTP Cancellation

Cooperative cancellation tokens and the per-endpoint registry that lets a
new call supersede the previous in-flight call to the same endpoint key.
"""

import asyncio
import logging
import threading
from typing import Dict, Optional


logger = logging.getLogger("keystone_http")


class CancellationToken:
    """
    One-shot cancellation signal for a single logical call.

    Transports observe it with ``wait()``; the executor checks
    ``cancelled`` to classify a failed exchange.
    """

    def __init__(self, endpoint_key: Optional[str] = None) -> None:
        self.endpoint_key = endpoint_key
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(endpoint_key={self.endpoint_key!r}, cancelled={self._cancelled})"


class AbortRegistry:
    """Tracks at most one live cancellation token per endpoint key."""

    def __init__(self) -> None:
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def begin(self, endpoint_key: str) -> CancellationToken:
        """Cancel the previous call for ``endpoint_key`` and register a new one."""
        token = CancellationToken(endpoint_key)
        with self._lock:
            previous = self._tokens.get(endpoint_key)
            self._tokens[endpoint_key] = token
        if previous is not None:
            logger.debug("Superseding in-flight request for %s", endpoint_key)
            previous.cancel()
        return token

    def end(self, endpoint_key: str, token: Optional[CancellationToken] = None) -> None:
        """
        Remove the handle for ``endpoint_key``.

        When ``token`` is given, the handle is only removed if it is still
        that token, so a superseded call cannot unregister its successor.
        """
        with self._lock:
            current = self._tokens.get(endpoint_key)
            if current is None:
                return
            if token is None or current is token:
                del self._tokens[endpoint_key]

    def cancel(self, endpoint_key: str) -> bool:
        """Cancel and remove the handle for ``endpoint_key``, if any."""
        with self._lock:
            token = self._tokens.pop(endpoint_key, None)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every registered call and clear the registry."""
        with self._lock:
            tokens = list(self._tokens.values())
            self._tokens.clear()
        for token in tokens:
            token.cancel()
        return len(tokens)

    def get(self, endpoint_key: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(endpoint_key)

    def __contains__(self, endpoint_key: object) -> bool:
        with self._lock:
            return endpoint_key in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
