"""Shared fixtures for the Keystone HTTP test suite."""

from typing import Any, Dict

import pytest

from keystone_http import ApiClient, ClientConfig, MemoryStorage
from tests.helpers.fake_transport import BASE_URL, FakeTransport


@pytest.fixture
def storage() -> MemoryStorage:
    """Store holding an expired access token and a valid refresh token."""
    store = MemoryStorage()
    store.set_tokens("old-access", "refresh-1")
    return store


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def client(fake_transport: FakeTransport, storage: MemoryStorage) -> ApiClient:
    """Client wired to the in-memory transport."""
    return ApiClient(ClientConfig(
        base_url=BASE_URL,
        storage=storage,
        transport=fake_transport,
        debug=True,
    ))


@pytest.fixture
def refresh_ok() -> Dict[str, Any]:
    return {"access": "new-access", "refresh": "refresh-2"}
