"""CRM adapter abstract base class -- the normalized contract every provider implements.

Every CRM provider (Rex, AgentBox, VaultRE, future ones) implements CRMAdapter.
The CRMIntegrationHub holds one instance per provider and routes agent-scoped
calls to it.

HttpCRMAdapter carries the plumbing the HTTP-backed providers share: one
long-lived injected httpx.AsyncClient, base URL resolution, tenacity retry of
idempotent requests on transient failures, and the test_connection
error-reporting contract.
Authentication is the one thing each provider must supply itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.crm_hub.schemas import (
    Activity,
    ConnectionResult,
    Contact,
    Credentials,
    Inspection,
    PagedResult,
    Property,
    Task,
)

logger = structlog.get_logger(__name__)


def _is_transient(exc: BaseException) -> bool:
    """Network errors, rate limiting and 5xx are worth another attempt."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


# Three attempts with exponential backoff; the last error is re-raised as is.
_crm_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)

_IDEMPOTENT_METHODS = frozenset({"GET", "PUT", "PATCH", "DELETE"})


class CRMAdapter(ABC):
    """Abstract interface for CRM provider operations.

    Adapters are stateless per call: credentials arrive with every request
    and are never stored or mutated.

    Methods:
        test_connection: Authenticated "who am I" probe, never raises.
        get_contacts: One page of contacts, optionally modified since a time.
        get_contact_by_id: Single contact or None.
        search_contacts_by_phone: Contacts matching a normalized phone number.
        create_contact / update_contact: Write a contact, return the stored copy.
        get_properties: One page of active listings.
        get_property_by_id: Single listing or None.
        search_properties_by_address: Listings matching an address fragment.
        log_activity: Log a call/note/etc, return the provider's id.
        create_task: Create a follow-up, return the provider's id.
        get_upcoming_inspections: Scheduled open homes / viewings.
    """

    crm_id: str = ""
    display_name: str = ""

    @abstractmethod
    async def test_connection(self, credentials: Credentials) -> ConnectionResult:
        """Probe the provider; report failure in the result instead of raising."""
        ...

    @abstractmethod
    async def get_contacts(
        self,
        credentials: Credentials,
        page: int = 1,
        page_size: int = 100,
        modified_since: datetime | None = None,
    ) -> PagedResult[Contact]:
        """Fetch one page of contacts."""
        ...

    @abstractmethod
    async def get_contact_by_id(self, credentials: Credentials, external_id: str) -> Contact | None:
        """Fetch a contact by external ID."""
        ...

    @abstractmethod
    async def search_contacts_by_phone(
        self, credentials: Credentials, phone_number: str
    ) -> list[Contact]:
        """Search contacts by phone number."""
        ...

    @abstractmethod
    async def create_contact(self, credentials: Credentials, contact: Contact) -> Contact:
        """Create a contact, return it as stored by the provider."""
        ...

    @abstractmethod
    async def update_contact(
        self, credentials: Credentials, external_id: str, contact: Contact
    ) -> Contact:
        """Update a contact by external ID, return it as stored by the provider."""
        ...

    @abstractmethod
    async def get_properties(
        self, credentials: Credentials, page: int = 1, page_size: int = 100
    ) -> PagedResult[Property]:
        """Fetch one page of active listings."""
        ...

    @abstractmethod
    async def get_property_by_id(self, credentials: Credentials, external_id: str) -> Property | None:
        """Fetch a listing by external ID."""
        ...

    @abstractmethod
    async def search_properties_by_address(
        self, credentials: Credentials, address_query: str
    ) -> list[Property]:
        """Search listings by address."""
        ...

    @abstractmethod
    async def log_activity(self, credentials: Credentials, activity: Activity) -> str:
        """Log an activity, return external ID."""
        ...

    @abstractmethod
    async def create_task(self, credentials: Credentials, task: Task) -> str:
        """Create a follow-up task, return external ID."""
        ...

    @abstractmethod
    async def get_upcoming_inspections(
        self, credentials: Credentials, agent_id: str | None = None
    ) -> list[Inspection]:
        """Fetch upcoming inspections, optionally for one provider-side agent."""
        ...


class HttpCRMAdapter(CRMAdapter):
    """Shared HTTP plumbing for REST-backed providers.

    Args:
        http_client: Long-lived httpx.AsyncClient owned by the caller.
        base_url: Provider API root; a credentials.base_url overrides it.
    """

    default_base_url: str = ""
    whoami_path: str = ""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str | None = None) -> None:
        self._client = http_client
        self._base_url = (base_url or self.default_base_url).rstrip("/")

    # ── Request building ────────────────────────────────────────────────

    @abstractmethod
    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        """Provider-specific authentication headers."""
        ...

    def _url(self, credentials: Credentials, path: str) -> str:
        base_url = (credentials.base_url or self._base_url).rstrip("/")
        return f"{base_url}{path}"

    async def _send(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Issue a request. Only idempotent verbs are retried; POST is sent once."""
        if method.upper() in _IDEMPOTENT_METHODS:
            return await self._send_with_retry(method, path, credentials, params=params, json=json)
        return await self._send_once(method, path, credentials, params=params, json=json)

    @_crm_retry
    async def _send_with_retry(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        return await self._send_once(method, path, credentials, params=params, json=json)

    async def _send_once(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Issue one request; transient statuses raise so the caller can retry them."""
        response = await self._client.request(
            method,
            self._url(credentials, path),
            params=params,
            json=json,
            headers=self._auth_headers(credentials),
        )
        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _request_json(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns None for a 404 when allow_not_found is set and for empty
        bodies. Any other non-2xx status raises httpx.HTTPStatusError.
        """
        response = await self._send(method, path, credentials, params=params, json=json)
        if allow_not_found and response.status_code == 404:
            return None
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    # ── Connection test ─────────────────────────────────────────────────

    async def test_connection(self, credentials: Credentials) -> ConnectionResult:
        try:
            response = await self._send("GET", self.whoami_path, credentials)
            if not response.is_success:
                return ConnectionResult(
                    success=False,
                    error_message=f"HTTP {response.status_code}: {response.reason_phrase}",
                )
            agent_name, office_name = self._parse_whoami(response.json())
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "crm.connection_test_failed",
                crm_id=self.crm_id,
                status_code=exc.response.status_code,
            )
            return ConnectionResult(
                success=False,
                error_message=f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}",
            )
        except Exception as exc:
            logger.error("crm.connection_test_failed", crm_id=self.crm_id, exc_info=True)
            return ConnectionResult(success=False, error_message=str(exc))

        logger.info("crm.connection_test_succeeded", crm_id=self.crm_id, agent_id=credentials.agent_id)
        return ConnectionResult(success=True, agent_name=agent_name, office_name=office_name)

    @abstractmethod
    def _parse_whoami(self, payload: Any) -> tuple[str | None, str | None]:
        """Extract (agent name, office name) from the who-am-I response."""
        ...
