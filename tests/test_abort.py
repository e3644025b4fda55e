"""
Tests for request supersession and cancellation.
"""

import asyncio

import pytest

from keystone_http import AbortRegistry, ApiClient, CancellationToken, ErrorKind, RefreshState
from keystone_http.errors import RequestCancelledError, ServerError, is_cancelled_error
from tests.helpers.fake_transport import (
    BASE_URL,
    REFRESH_URL,
    FakeTransport,
    SentRequest,
    json_response,
    wait_until,
)


def held_until(event: asyncio.Event, data=None):
    """Handler that would succeed once ``event`` is set."""
    async def handler(call: SentRequest):
        await event.wait()
        return json_response(200, data if data is not None else {"url": call.url})
    return handler


# =============================================================================
# Registry
# =============================================================================

class TestAbortRegistry:
    """Unit tests for AbortRegistry and CancellationToken."""

    def test_begin_supersedes_previous(self):
        registry = AbortRegistry()
        first = registry.begin("/search")
        second = registry.begin("/search")

        assert first.cancelled
        assert not second.cancelled
        assert registry.get("/search") is second
        assert len(registry) == 1

    def test_keys_are_independent(self):
        registry = AbortRegistry()
        search = registry.begin("/search")
        registry.begin("/profile")

        assert not search.cancelled
        assert len(registry) == 2

    def test_end_only_removes_own_handle(self):
        """A superseded call cannot unregister its successor."""
        registry = AbortRegistry()
        first = registry.begin("/search")
        second = registry.begin("/search")

        registry.end("/search", first)
        assert registry.get("/search") is second

        registry.end("/search", second)
        assert "/search" not in registry

    def test_end_unknown_key(self):
        registry = AbortRegistry()
        registry.end("/nothing")
        assert len(registry) == 0

    def test_cancel(self):
        registry = AbortRegistry()
        token = registry.begin("/search")

        assert registry.cancel("/search") is True
        assert token.cancelled
        assert registry.cancel("/search") is False

    def test_cancel_all(self):
        registry = AbortRegistry()
        tokens = [registry.begin(key) for key in ("/a", "/b", "/c")]

        assert registry.cancel_all() == 3
        assert all(token.cancelled for token in tokens)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_token_wait(self):
        token = CancellationToken("/search")
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)
        assert token.cancelled

    @pytest.mark.asyncio
    async def test_wait_on_cancelled_token_returns(self):
        token = CancellationToken()
        token.cancel()
        await asyncio.wait_for(token.wait(), timeout=1)


# =============================================================================
# Supersession through the client
# =============================================================================

class TestSupersession:
    """abort_previous semantics end to end."""

    @pytest.mark.asyncio
    async def test_newer_call_cancels_older(self, client: ApiClient, fake_transport: FakeTransport):
        """A is cancelled and B resolves, although A would have succeeded."""
        release = asyncio.Event()
        fake_transport.route("GET", f"{BASE_URL}/search", held_until(release))

        first = asyncio.create_task(client.get("/search", abort_previous=True))
        await wait_until(lambda: len(fake_transport.calls) == 1)
        second = asyncio.create_task(client.get("/search", abort_previous=True))

        with pytest.raises(RequestCancelledError) as exc_info:
            await first
        assert exc_info.value.kind is ErrorKind.CANCELLED
        assert is_cancelled_error(exc_info.value)

        release.set()
        assert await second == {"url": f"{BASE_URL}/search"}
        assert "/search" not in client._aborts

    @pytest.mark.asyncio
    async def test_opt_out_calls_are_never_cancelled(
        self, client: ApiClient, fake_transport: FakeTransport
    ):
        """Calls without abort_previous are not cancelled by siblings."""
        release = asyncio.Event()
        fake_transport.route("GET", f"{BASE_URL}/search", held_until(release))

        plain = asyncio.create_task(client.get("/search"))
        await wait_until(lambda: len(fake_transport.calls) == 1)
        superseding = asyncio.create_task(client.get("/search", abort_previous=True))
        await wait_until(lambda: len(fake_transport.calls) == 2)

        release.set()
        results = await asyncio.gather(plain, superseding)

        assert results == [{"url": f"{BASE_URL}/search"}] * 2
        assert fake_transport.calls[0].token is None

    @pytest.mark.asyncio
    async def test_explicit_cancel_request(self, client: ApiClient, fake_transport: FakeTransport):
        fake_transport.route("GET", f"{BASE_URL}/feed", held_until(asyncio.Event()))

        task = asyncio.create_task(client.get("/feed", abort_previous=True))
        await wait_until(lambda: len(fake_transport.calls) == 1)

        assert client.cancel_request("/feed") is True
        with pytest.raises(RequestCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_cancel_all_requests_keeps_credentials(
        self, client: ApiClient, fake_transport: FakeTransport
    ):
        fake_transport.route("GET", f"{BASE_URL}/a", held_until(asyncio.Event()))
        fake_transport.route("GET", f"{BASE_URL}/b", held_until(asyncio.Event()))

        tasks = [
            asyncio.create_task(client.get("/a", abort_previous=True)),
            asyncio.create_task(client.get("/b", abort_previous=True)),
        ]
        await wait_until(lambda: len(fake_transport.calls) == 2)

        assert client.cancel_all_requests() == 2
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RequestCancelledError) for r in results)
        assert client.is_authenticated()

    @pytest.mark.asyncio
    async def test_superseded_401_does_not_refresh(
        self, client: ApiClient, fake_transport: FakeTransport, refresh_ok
    ):
        """A 401 for a call already cancelled never starts a refresh cycle."""
        def expired_after_cancel(call: SentRequest):
            client.cancel_request("/feed")
            return json_response(401, {})

        fake_transport.route("GET", f"{BASE_URL}/feed", expired_after_cancel)
        fake_transport.route("POST", REFRESH_URL, lambda call: json_response(200, refresh_ok))

        with pytest.raises(RequestCancelledError):
            await client.get("/feed", abort_previous=True)

        assert fake_transport.calls_to(REFRESH_URL) == []
        assert client.coordinator.state is RefreshState.IDLE
        assert client.storage.get_tokens().access_token == "old-access"

    @pytest.mark.asyncio
    async def test_logout_cancels_everything(self, client: ApiClient, fake_transport: FakeTransport):
        never = asyncio.Event()
        fake_transport.route("GET", f"{BASE_URL}/a", held_until(never))
        fake_transport.route("GET", f"{BASE_URL}/b", held_until(never))

        tasks = [
            asyncio.create_task(client.get("/a", abort_previous=True)),
            asyncio.create_task(client.get("/b", abort_previous=True)),
        ]
        await wait_until(lambda: len(fake_transport.calls) == 2)

        client.logout()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RequestCancelledError) for r in results)
        assert not client.is_authenticated()

    @pytest.mark.asyncio
    async def test_handle_released_after_success(
        self, client: ApiClient, fake_transport: FakeTransport
    ):
        fake_transport.route("GET", f"{BASE_URL}/feed", lambda call: json_response(200, []))

        assert await client.get("/feed", abort_previous=True) == []
        assert "/feed" not in client._aborts

    @pytest.mark.asyncio
    async def test_handle_released_after_error(
        self, client: ApiClient, fake_transport: FakeTransport
    ):
        fake_transport.route("GET", f"{BASE_URL}/feed", lambda call: json_response(500, {}))

        with pytest.raises(ServerError):
            await client.get("/feed", abort_previous=True)
        assert "/feed" not in client._aborts

    @pytest.mark.asyncio
    async def test_cancel_during_request_interceptor(
        self, client: ApiClient, fake_transport: FakeTransport
    ):
        """A call superseded before dispatch is cancelled without being sent."""
        fake_transport.route("GET", f"{BASE_URL}/search", lambda call: json_response(200, {}))
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_step(request):
            if not entered.is_set():
                entered.set()
                await release.wait()
            return request

        client.add_request_interceptor(slow_step)

        first = asyncio.create_task(client.get("/search", abort_previous=True))
        await entered.wait()
        second = asyncio.create_task(client.get("/search", abort_previous=True))
        assert await second == {}

        release.set()
        with pytest.raises(RequestCancelledError):
            await first
        assert len(fake_transport.calls) == 1
