"""Shared fixtures for CRM integration tests.

Provides:
- Credentials for a test agent
- In-memory credential store and contact repository
- mock_http: factory building an httpx.AsyncClient over httpx.MockTransport
  that records every request it serves
"""

from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from src.crm_hub.contacts import InMemoryContactRepository
from src.crm_hub.credentials import InMemoryCredentialStore
from src.crm_hub.schemas import Credentials

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def mock_http() -> Callable[[Handler], tuple[httpx.AsyncClient, list[httpx.Request]]]:
    """Factory: handler -> (AsyncClient, list of captured requests)."""

    def _build(handler: Handler) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def _recording(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        return httpx.AsyncClient(transport=httpx.MockTransport(_recording)), requests

    return _build


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(agent_id="agent-1", access_token="tok-123")


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def contact_repository() -> InMemoryContactRepository:
    return InMemoryContactRepository()
