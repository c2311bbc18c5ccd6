"""Contact repository -- where imported CRM contacts land.

The platform's primary contact store sits behind ContactRepository. The import
job stages a whole run and then hands it over in one upsert_many call, so an
aborted import never leaves a partial write behind.

InMemoryContactRepository implements the upsert-by-(external id, source)
semantics the import counts are defined by.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

import structlog

from src.crm_hub.schemas import Contact, ContactUpsertCounts, UpsertOutcome

logger = structlog.get_logger(__name__)

# Fields that change on every fetch without the contact itself changing.
_VOLATILE_FIELDS = {"created_at", "updated_at"}


class ContactRepository(ABC):
    """Abstract sink for imported contacts, scoped per agent."""

    @abstractmethod
    async def upsert(self, agent_id: str, contact: Contact) -> UpsertOutcome:
        """Insert or update one contact keyed by (crm_source, external_id)."""
        ...

    async def upsert_many(self, agent_id: str, contacts: Iterable[Contact]) -> ContactUpsertCounts:
        counts = ContactUpsertCounts()
        for contact in contacts:
            counts.record(await self.upsert(agent_id, contact))
        return counts


class InMemoryContactRepository(ContactRepository):
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str, str], Contact] = {}

    async def upsert(self, agent_id: str, contact: Contact) -> UpsertOutcome:
        if not contact.external_id:
            logger.debug("crm.contact_skipped_no_id", agent_id=agent_id, crm_source=contact.crm_source)
            return UpsertOutcome.SKIPPED

        key = (agent_id, contact.crm_source, contact.external_id)
        existing = self._rows.get(key)
        self._rows[key] = contact.model_copy(deep=True)
        if existing is None:
            return UpsertOutcome.INSERTED
        if existing.model_dump(exclude=_VOLATILE_FIELDS) == contact.model_dump(exclude=_VOLATILE_FIELDS):
            return UpsertOutcome.SKIPPED
        return UpsertOutcome.UPDATED

    async def get(self, agent_id: str, crm_source: str, external_id: str) -> Contact | None:
        row = self._rows.get((agent_id, crm_source, external_id))
        return row.model_copy(deep=True) if row is not None else None

    async def count(self, agent_id: str) -> int:
        return sum(1 for key in self._rows if key[0] == agent_id)
