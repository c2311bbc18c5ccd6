"""Unit tests for CRMIntegrationHub.

Covers the adapter registry, agent-scoped routing through the credential
store, the paginated import job (staging, cancellation, abort without partial
commit, binding save), incremental sync, and the never-raise write paths.
Provider HTTP is simulated with httpx.MockTransport or a scripted adapter.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, call, patch

import httpx
import pytest

from src.crm_hub.adapters.base import CRMAdapter
from src.crm_hub.adapters.rex import RexAdapter
from src.crm_hub.hub import CRMIntegrationHub, UnknownCRMError
from src.crm_hub.schemas import (
    Activity,
    ActivityType,
    ConnectionResult,
    Contact,
    Credentials,
    Inspection,
    PagedResult,
    Property,
    Task,
)


# ── Helpers ─────────────────────────────────────────────────────────────────


class ScriptedAdapter(CRMAdapter):
    """In-process adapter returning canned pages and recording calls."""

    crm_id = "scripted"
    display_name = "Scripted CRM"

    def __init__(self, pages: list[list[Contact]] | None = None, fail_on_page: int | None = None):
        self.pages = pages or [[]]
        self.fail_on_page = fail_on_page
        self.contact_calls: list[dict] = []
        self.calls: list[str] = []
        self.inspection_agent_ids: list[str | None] = []

    async def test_connection(self, credentials):
        self.calls.append("test_connection")
        return ConnectionResult(success=True, agent_name="Scripted Agent")

    async def get_contacts(self, credentials, page=1, page_size=100, modified_since=None):
        self.contact_calls.append({"page": page, "page_size": page_size, "modified_since": modified_since})
        if self.fail_on_page == page:
            raise httpx.ConnectError("provider unreachable")
        total = sum(len(p) for p in self.pages)
        return PagedResult[Contact](
            items=self.pages[page - 1], page=page, page_size=page_size, total_items=total
        )

    async def get_contact_by_id(self, credentials, external_id):
        return None

    async def search_contacts_by_phone(self, credentials, phone_number):
        self.calls.append("search_contacts_by_phone")
        return [_contact("c-1"), _contact("c-2")]

    async def create_contact(self, credentials, contact):
        return contact

    async def update_contact(self, credentials, external_id, contact):
        return contact

    async def get_properties(self, credentials, page=1, page_size=100):
        return PagedResult[Property]()

    async def get_property_by_id(self, credentials, external_id):
        return None

    async def search_properties_by_address(self, credentials, address_query):
        self.calls.append("search_properties_by_address")
        return [Property(external_id="p-1", crm_source=self.crm_id, address=address_query)]

    async def log_activity(self, credentials, activity):
        self.calls.append("log_activity")
        return "act-1"

    async def create_task(self, credentials, task):
        self.calls.append("create_task")
        return "task-1"

    async def get_upcoming_inspections(self, credentials, agent_id=None):
        self.inspection_agent_ids.append(agent_id)
        start = datetime(2026, 3, 7, 10, tzinfo=timezone.utc)
        return [Inspection(external_id="i-1", property_id="p-1", start_time=start, end_time=start)]


class ExplodingAdapter(ScriptedAdapter):
    crm_id = "exploding"

    async def log_activity(self, credentials, activity):
        raise httpx.ConnectError("down")

    async def create_task(self, credentials, task):
        raise RuntimeError("task API exploded")


def _contact(external_id: str, source: str = "scripted") -> Contact:
    return Contact(external_id=external_id, crm_source=source, full_name=f"Contact {external_id}")


def _pages(*sizes: int) -> list[list[Contact]]:
    pages, next_id = [], 0
    for size in sizes:
        pages.append([_contact(str(next_id + i)) for i in range(size)])
        next_id += size
    return pages


def _hub(adapters, credential_store, contact_repository) -> CRMIntegrationHub:
    return CRMIntegrationHub(
        adapters, credential_store, contact_repository, page_size=100, page_delay_seconds=0
    )


# ── Registry ────────────────────────────────────────────────────────────────


class TestRegistry:
    def test_available_adapters(self, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter(), ExplodingAdapter()], credential_store, contact_repository)

        infos = hub.get_available_adapters()

        assert {(i.crm_id, i.display_name) for i in infos} == {
            ("scripted", "Scripted CRM"),
            ("exploding", "Scripted CRM"),
        }

    def test_get_adapter_is_case_insensitive(self, credential_store, contact_repository):
        adapter = ScriptedAdapter()
        hub = _hub([adapter], credential_store, contact_repository)

        assert hub.get_adapter("SCRIPTED") is adapter

    def test_unknown_adapter_raises(self, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        with pytest.raises(UnknownCRMError, match="Unknown CRM: nope") as exc_info:
            hub.get_adapter("nope")
        assert exc_info.value.crm_id == "nope"

    def test_duplicate_registration_rejected(self, credential_store, contact_repository):
        with pytest.raises(ValueError, match="already registered"):
            _hub([ScriptedAdapter(), ScriptedAdapter()], credential_store, contact_repository)


# ── Connection ──────────────────────────────────────────────────────────────


class TestConnection:
    @pytest.mark.asyncio
    async def test_unknown_provider_without_network(self, credentials, credential_store, contact_repository):
        adapter = ScriptedAdapter()
        hub = _hub([adapter], credential_store, contact_repository)

        result = await hub.test_connection("unknown-provider", credentials)

        assert result.success is False
        assert result.error_message == "Unknown CRM: unknown-provider"
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_delegates_to_adapter(self, credentials, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        result = await hub.test_connection("scripted", credentials)

        assert result.success is True
        assert result.agent_name == "Scripted Agent"

    @pytest.mark.asyncio
    async def test_disconnect(self, credentials, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)
        await credential_store.save_connection("agent-1", "scripted", credentials)

        await hub.disconnect("agent-1")
        await hub.disconnect("agent-1")

        assert await hub.get_connection("agent-1") is None


# ── Import ──────────────────────────────────────────────────────────────────


class TestImportContacts:
    @pytest.mark.asyncio
    async def test_imports_every_page_through_rex(
        self, mock_http, credentials, credential_store, contact_repository
    ):
        sizes = {1: 100, 2: 100, 3: 40}

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            start = (page - 1) * 100
            data = [
                {"id": start + i, "first_name": "C", "last_name": str(start + i)}
                for i in range(sizes[page])
            ]
            return httpx.Response(
                200, json={"data": data, "meta": {"current_page": page, "total": 240}}
            )

        client, requests = mock_http(handler)
        hub = _hub([RexAdapter(client)], credential_store, contact_repository)

        result = await hub.import_contacts("agent-1", "rex", credentials)

        assert result.success is True
        assert result.imported == 240
        assert result.updated == 0
        assert result.pages_fetched == 3
        assert [int(r.url.params["page"]) for r in requests] == [1, 2, 3]
        assert await contact_repository.count("agent-1") == 240

        binding = await credential_store.get_connection("agent-1")
        assert binding.crm_id == "rex"
        assert binding.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_delay_between_pages_only(self, credentials, credential_store, contact_repository):
        hub = CRMIntegrationHub(
            [ScriptedAdapter(_pages(100, 100, 40))],
            credential_store,
            contact_repository,
            page_size=100,
            page_delay_seconds=0.25,
        )

        with patch("src.crm_hub.hub.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await hub.import_contacts("agent-1", "scripted", credentials)

        assert result.success is True
        assert result.pages_fetched == 3
        assert result.imported == 240
        assert sleep.await_args_list == [call(0.25), call(0.25)]

    @pytest.mark.asyncio
    async def test_single_page_import_never_sleeps(
        self, credentials, credential_store, contact_repository
    ):
        hub = CRMIntegrationHub(
            [ScriptedAdapter(_pages(5))],
            credential_store,
            contact_repository,
            page_delay_seconds=0.25,
        )

        with patch("src.crm_hub.hub.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await hub.import_contacts("agent-1", "scripted", credentials)

        assert result.pages_fetched == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reimport_counts_skipped_and_updated(

        self, credentials, credential_store, contact_repository
    ):
        adapter = ScriptedAdapter(_pages(2))
        hub = _hub([adapter], credential_store, contact_repository)
        await hub.import_contacts("agent-1", "scripted", credentials)

        adapter.pages = [[_contact("0"), Contact(external_id="1", crm_source="scripted", full_name="Renamed")]]
        result = await hub.import_contacts("agent-1", "scripted", credentials)

        assert (result.imported, result.updated, result.skipped) == (0, 1, 1)

    @pytest.mark.asyncio
    async def test_cancel_after_first_page(self, credentials, credential_store, contact_repository):
        cancel = asyncio.Event()

        class CancellingAdapter(ScriptedAdapter):
            async def get_contacts(self, credentials, page=1, page_size=100, modified_since=None):
                result = await super().get_contacts(credentials, page, page_size, modified_since)
                cancel.set()
                return result

        adapter = CancellingAdapter(_pages(100, 100, 40))
        hub = _hub([adapter], credential_store, contact_repository)

        result = await hub.import_contacts("agent-1", "scripted", credentials, cancel_event=cancel)

        assert result.success is False
        assert result.error_message == "Import cancelled"
        assert [c["page"] for c in adapter.contact_calls] == [1]
        assert result.imported == 0
        assert await contact_repository.count("agent-1") == 0
        assert await credential_store.get_connection("agent-1") is None

    @pytest.mark.asyncio
    async def test_cancelled_before_start_makes_no_request(
        self, credentials, credential_store, contact_repository
    ):
        cancel = asyncio.Event()
        cancel.set()
        adapter = ScriptedAdapter(_pages(10))
        hub = _hub([adapter], credential_store, contact_repository)

        result = await hub.import_contacts("agent-1", "scripted", credentials, cancel_event=cancel)

        assert result.success is False
        assert adapter.contact_calls == []

    @pytest.mark.asyncio
    async def test_failure_mid_import_commits_nothing(
        self, credentials, credential_store, contact_repository
    ):
        adapter = ScriptedAdapter(_pages(100, 100, 40), fail_on_page=2)
        hub = _hub([adapter], credential_store, contact_repository)

        result = await hub.import_contacts("agent-1", "scripted", credentials)

        assert result.success is False
        assert result.error_message == "provider unreachable"
        assert (result.imported, result.updated, result.skipped) == (0, 0, 0)
        assert result.pages_fetched == 1
        assert await contact_repository.count("agent-1") == 0
        assert await credential_store.get_connection("agent-1") is None

    @pytest.mark.asyncio
    async def test_repository_failure_does_not_save_binding(self, credentials, credential_store):
        repository = AsyncMock()
        repository.upsert_many = AsyncMock(side_effect=RuntimeError("db down"))
        hub = _hub([ScriptedAdapter(_pages(3))], credential_store, repository)

        result = await hub.import_contacts("agent-1", "scripted", credentials)

        assert result.success is False
        assert result.error_message == "db down"
        assert await credential_store.get_connection("agent-1") is None

    @pytest.mark.asyncio
    async def test_unknown_provider(self, credentials, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        result = await hub.import_contacts("agent-1", "nope", credentials)

        assert result.success is False
        assert result.error_message == "Unknown CRM: nope"

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, credentials, credential_store, contact_repository):
        class HangingAdapter(ScriptedAdapter):
            async def get_contacts(self, credentials, page=1, page_size=100, modified_since=None):
                await asyncio.sleep(3600)

        hub = _hub([HangingAdapter()], credential_store, contact_repository)
        task = asyncio.ensure_future(hub.import_contacts("agent-1", "scripted", credentials))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


# ── Sync ────────────────────────────────────────────────────────────────────


class TestSyncContacts:
    @pytest.mark.asyncio
    async def test_not_connected(self, credential_store, contact_repository):
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        result = await hub.sync_contacts("agent-9")

        assert result.success is False
        assert result.error_message == "No CRM connection for agent agent-9"

    @pytest.mark.asyncio
    async def test_uses_last_sync_as_modified_since(
        self, credentials, credential_store, contact_repository
    ):
        last_sync = datetime(2026, 3, 1, tzinfo=timezone.utc)
        await credential_store.save_connection(
            "agent-1", "scripted", credentials, crm_agent_id="s-1", last_sync_at=last_sync
        )
        adapter = ScriptedAdapter(_pages(5))
        hub = _hub([adapter], credential_store, contact_repository)

        result = await hub.sync_contacts("agent-1")

        assert result.success is True
        assert result.imported == 5
        assert adapter.contact_calls[0]["modified_since"] == last_sync
        binding = await credential_store.get_connection("agent-1")
        assert binding.last_sync_at > last_sync
        assert binding.crm_agent_id == "s-1"


# ── Agent-scoped operations ─────────────────────────────────────────────────


class TestAgentScopedOperations:
    @pytest.mark.asyncio
    async def test_find_contact_unbound_agent_makes_no_call(
        self, mock_http, credential_store, contact_repository
    ):
        client, requests = mock_http(lambda r: httpx.Response(200, json={"data": []}))
        hub = _hub([RexAdapter(client)], credential_store, contact_repository)

        assert await hub.find_contact_by_phone("agent-1", "0412 345 678") is None
        assert requests == []

    @pytest.mark.asyncio
    async def test_find_contact_returns_first_match(
        self, credentials, credential_store, contact_repository
    ):
        await credential_store.save_connection("agent-1", "scripted", credentials)
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        contact = await hub.find_contact_by_phone("agent-1", "0412")

        assert contact.external_id == "c-1"

    @pytest.mark.asyncio
    async def test_stale_binding_is_not_connected(self, credentials, credential_store, contact_repository):
        await credential_store.save_connection("agent-1", "retired-crm", credentials)
        hub = _hub([ScriptedAdapter()], credential_store, contact_repository)

        assert await hub.find_contact_by_phone("agent-1", "0412") is None
        assert await hub.search_properties("agent-1", "Beach") == []
        assert await hub.log_call("agent-1", Activity(subject="Call")) is None

    @pytest.mark.asyncio
    async def test_not_connected_returns_empty(self, credential_store, contact_repository):
        adapter = ScriptedAdapter()
        hub = _hub([adapter], credential_store, contact_repository)

        assert await hub.search_properties("agent-1", "Beach") == []
        assert await hub.get_upcoming_inspections("agent-1") == []
        assert await hub.log_call("agent-1", Activity(subject="Call")) is None
        assert await hub.create_follow_up("agent-1", Task(subject="Later")) is None
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_connected_delegates(self, credentials, credential_store, contact_repository):
        await credential_store.save_connection(
            "agent-1", "scripted", credentials, crm_agent_id="scripted-agent-7"
        )
        adapter = ScriptedAdapter()
        hub = _hub([adapter], credential_store, contact_repository)

        assert await hub.log_call("agent-1", Activity(type=ActivityType.CALL, subject="Call")) == "act-1"
        assert await hub.create_follow_up("agent-1", Task(subject="Later")) == "task-1"
        assert (await hub.search_properties("agent-1", "Beach"))[0].address == "Beach"
        assert len(await hub.get_upcoming_inspections("agent-1")) == 1
        assert adapter.inspection_agent_ids == ["scripted-agent-7"]

    @pytest.mark.asyncio
    async def test_log_call_swallows_provider_errors(
        self, credentials, credential_store, contact_repository
    ):
        await credential_store.save_connection("agent-1", "exploding", credentials)
        hub = _hub([ExplodingAdapter()], credential_store, contact_repository)

        assert await hub.log_call("agent-1", Activity(subject="Call")) is None
        assert await hub.create_follow_up("agent-1", Task(subject="Later")) is None

    @pytest.mark.asyncio
    async def test_writes_swallow_credential_store_errors(self, contact_repository):
        store = AsyncMock()
        store.get_connection = AsyncMock(side_effect=ConnectionError("redis down"))
        adapter = ScriptedAdapter()
        hub = _hub([adapter], store, contact_repository)

        assert await hub.log_call("agent-1", Activity(subject="Call")) is None
        assert await hub.create_follow_up("agent-1", Task(subject="Later")) is None
        assert adapter.calls == []
