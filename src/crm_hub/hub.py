"""CRM integration hub -- routes agent-scoped work to the agent's CRM.

The hub owns a registry of provider adapters keyed by crm_id (case-insensitive,
built once at construction) and resolves "this agent's CRM" at call time from
the credential store. Callers never touch an adapter or credentials directly
for day-to-day operations; they pass an agent id.

Not being connected is a normal state, not an error: lookups return None or an
empty list and writes log a warning. Only a misconfigured provider id raises,
and only from get_adapter().

The bulk import pages through the provider's contacts with a fixed delay
between pages, stages everything, and commits once at the end. Any failure
aborts the whole import without committing a partial run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from datetime import datetime

import structlog

from src.crm_hub.adapters.base import CRMAdapter
from src.crm_hub.contacts import ContactRepository
from src.crm_hub.credentials import CredentialStore
from src.crm_hub.schemas import (
    Activity,
    AdapterInfo,
    AgentCrmSettings,
    ConnectionResult,
    Contact,
    Credentials,
    ImportResult,
    Inspection,
    Property,
    Task,
    utcnow,
)

logger = structlog.get_logger(__name__)


class CRMError(Exception):
    """Base class for CRM integration errors."""


class UnknownCRMError(CRMError):
    """Raised when a provider id has no registered adapter."""

    def __init__(self, crm_id: str) -> None:
        self.crm_id = crm_id
        super().__init__(f"Unknown CRM: {crm_id}")


class CRMIntegrationHub:
    """Single entry point for CRM work on behalf of an agent.

    Args:
        adapters: One adapter per provider. Duplicate crm_ids are rejected.
        credential_store: Where agent -> CRM bindings live.
        contact_repository: Where imported contacts are committed.
        page_size: Contacts requested per page during import.
        page_delay_seconds: Fixed pause between page requests.
    """

    def __init__(
        self,
        adapters: Iterable[CRMAdapter],
        credential_store: CredentialStore,
        contact_repository: ContactRepository,
        *,
        page_size: int = 100,
        page_delay_seconds: float = 0.1,
    ) -> None:
        self._adapters: dict[str, CRMAdapter] = {}
        for adapter in adapters:
            key = adapter.crm_id.lower()
            if key in self._adapters:
                raise ValueError(f"CRM adapter already registered: {adapter.crm_id}")
            self._adapters[key] = adapter
        self._credential_store = credential_store
        self._contacts = contact_repository
        self._page_size = page_size
        self._page_delay_seconds = page_delay_seconds
        logger.info("crm.hub_initialized", adapters=sorted(self._adapters))

    # ── Registry ────────────────────────────────────────────────────────

    def get_available_adapters(self) -> list[AdapterInfo]:
        return [
            AdapterInfo(crm_id=adapter.crm_id, display_name=adapter.display_name)
            for adapter in self._adapters.values()
        ]

    def get_adapter(self, crm_id: str) -> CRMAdapter:
        """Resolve a provider id to its adapter.

        Raises:
            UnknownCRMError: If no adapter is registered for crm_id.
        """
        adapter = self._adapters.get(crm_id.lower())
        if adapter is None:
            raise UnknownCRMError(crm_id)
        return adapter

    # ── Connection lifecycle ────────────────────────────────────────────

    async def test_connection(self, crm_id: str, credentials: Credentials) -> ConnectionResult:
        try:
            adapter = self.get_adapter(crm_id)
        except UnknownCRMError as exc:
            return ConnectionResult(success=False, error_message=str(exc))
        return await adapter.test_connection(credentials)

    async def get_connection(self, agent_id: str) -> AgentCrmSettings | None:
        return await self._credential_store.get_connection(agent_id)

    async def disconnect(self, agent_id: str) -> None:
        await self._credential_store.delete_connection(agent_id)
        logger.info("crm.disconnected", agent_id=agent_id)

    async def _resolve(self, agent_id: str) -> tuple[CRMAdapter, AgentCrmSettings] | None:
        """The agent's adapter and binding, or None when not connected."""
        binding = await self._credential_store.get_connection(agent_id)
        if binding is None:
            return None
        adapter = self._adapters.get(binding.crm_id.lower())
        if adapter is None:
            logger.warning("crm.binding_unknown_provider", agent_id=agent_id, crm_id=binding.crm_id)
            return None
        return adapter, binding

    # ── Import ──────────────────────────────────────────────────────────

    async def import_contacts(
        self,
        agent_id: str,
        crm_id: str,
        credentials: Credentials,
        *,
        cancel_event: asyncio.Event | None = None,
        modified_since: datetime | None = None,
    ) -> ImportResult:
        """Import every contact from the provider and bind the agent to it.

        Pages are requested from page 1 until the provider reports no next
        page. Contacts are committed only once pagination completes, and the
        binding is saved with last_sync_at only after a successful commit.

        Args:
            agent_id: Agent the contacts belong to.
            crm_id: Provider to import from.
            credentials: The agent's credentials for that provider.
            cancel_event: Checked before each page request; when set the
                import stops and nothing is committed.
            modified_since: Only fetch contacts changed since this time.

        Returns:
            ImportResult with counts on success, or zero counts and the
            causing message on failure.
        """
        try:
            adapter = self.get_adapter(crm_id)
        except UnknownCRMError as exc:
            return ImportResult(success=False, error_message=str(exc))

        started = time.monotonic()
        pages_fetched = 0
        logger.info(
            "crm.import_started",
            agent_id=agent_id,
            crm_id=crm_id,
            incremental=modified_since is not None,
        )

        try:
            staged: list[Contact] = []
            page = 1
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("crm.import_cancelled", agent_id=agent_id, crm_id=crm_id, page=page)
                    return ImportResult(
                        success=False,
                        pages_fetched=pages_fetched,
                        duration_ms=_elapsed_ms(started),
                        error_message="Import cancelled",
                    )

                result = await adapter.get_contacts(
                    credentials, page, self._page_size, modified_since
                )
                pages_fetched += 1
                staged.extend(result.items)
                logger.debug(
                    "crm.import_page_fetched",
                    agent_id=agent_id,
                    page=page,
                    count=len(result.items),
                    total_pages=result.total_pages,
                )
                if not result.has_next_page:
                    break
                await asyncio.sleep(self._page_delay_seconds)
                page += 1

            counts = await self._contacts.upsert_many(agent_id, staged)
            await self._credential_store.save_connection(
                agent_id, adapter.crm_id, credentials, last_sync_at=utcnow()
            )
        except Exception as exc:
            logger.error(
                "crm.import_failed",
                agent_id=agent_id,
                crm_id=crm_id,
                pages_fetched=pages_fetched,
                error=str(exc),
                exc_info=True,
            )
            return ImportResult(
                success=False,
                pages_fetched=pages_fetched,
                duration_ms=_elapsed_ms(started),
                error_message=str(exc),
            )

        duration_ms = _elapsed_ms(started)
        logger.info(
            "crm.import_completed",
            agent_id=agent_id,
            crm_id=crm_id,
            imported=counts.inserted,
            updated=counts.updated,
            skipped=counts.skipped,
            pages_fetched=pages_fetched,
            duration_ms=duration_ms,
        )
        return ImportResult(
            success=True,
            imported=counts.inserted,
            updated=counts.updated,
            skipped=counts.skipped,
            pages_fetched=pages_fetched,
            duration_ms=duration_ms,
        )

    async def sync_contacts(
        self, agent_id: str, *, cancel_event: asyncio.Event | None = None
    ) -> ImportResult:
        """Incremental import of what changed since the agent's last sync."""
        binding = await self._credential_store.get_connection(agent_id)
        if binding is None:
            return ImportResult(
                success=False, error_message=f"No CRM connection for agent {agent_id}"
            )
        return await self.import_contacts(
            agent_id,
            binding.crm_id,
            binding.credentials,
            cancel_event=cancel_event,
            modified_since=binding.last_sync_at,
        )

    # ── Agent-scoped operations ─────────────────────────────────────────

    async def find_contact_by_phone(self, agent_id: str, phone_number: str) -> Contact | None:
        resolved = await self._resolve(agent_id)
        if resolved is None:
            return None
        adapter, binding = resolved
        contacts = await adapter.search_contacts_by_phone(binding.credentials, phone_number)
        return contacts[0] if contacts else None

    async def log_call(self, agent_id: str, activity: Activity) -> str | None:
        """Log an activity to the agent's CRM.

        Never raises: a call must not fail because the CRM or the credential
        store is unavailable. Returns the provider's activity id, or None when
        not connected or the lookup or provider call failed.
        """
        try:
            resolved = await self._resolve(agent_id)
            if resolved is None:
                logger.warning("crm.not_connected", agent_id=agent_id, operation="log_call")
                return None
            adapter, binding = resolved
            activity_id = await adapter.log_activity(binding.credentials, activity)
        except Exception:
            logger.error("crm.call_log_failed", agent_id=agent_id, exc_info=True)
            return None
        logger.info("crm.call_logged", agent_id=agent_id, crm_id=adapter.crm_id, activity_id=activity_id)
        return activity_id

    async def create_follow_up(self, agent_id: str, task: Task) -> str | None:
        """Create a follow-up task in the agent's CRM. Never raises."""
        try:
            resolved = await self._resolve(agent_id)
            if resolved is None:
                logger.warning("crm.not_connected", agent_id=agent_id, operation="create_follow_up")
                return None
            adapter, binding = resolved
            task_id = await adapter.create_task(binding.credentials, task)
        except Exception:
            logger.error("crm.follow_up_failed", agent_id=agent_id, exc_info=True)
            return None
        logger.info("crm.follow_up_created", agent_id=agent_id, crm_id=adapter.crm_id, task_id=task_id)
        return task_id

    async def search_properties(self, agent_id: str, address_query: str) -> list[Property]:
        resolved = await self._resolve(agent_id)
        if resolved is None:
            return []
        adapter, binding = resolved
        return await adapter.search_properties_by_address(binding.credentials, address_query)

    async def get_upcoming_inspections(self, agent_id: str) -> list[Inspection]:
        resolved = await self._resolve(agent_id)
        if resolved is None:
            return []
        adapter, binding = resolved
        return await adapter.get_upcoming_inspections(binding.credentials, binding.crm_agent_id)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
