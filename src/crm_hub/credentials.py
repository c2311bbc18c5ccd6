"""Credential store -- per-agent CRM bindings.

Each agent is bound to at most one CRM provider. A binding carries the
provider id, the agent's credentials for it, the agent's own id inside the
provider, and connection/sync timestamps.

Backends:
- InMemoryCredentialStore: process-local dict, for tests and single-node dev.
- RedisCredentialStore: JSON under crm-settings:{agent_id} with a sliding
  expiry refreshed on every read.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from src.crm_hub.schemas import AgentCrmSettings, Credentials, utcnow

logger = structlog.get_logger(__name__)

KEY_PREFIX = "crm-settings:"


def _merge_binding(
    existing: AgentCrmSettings | None,
    agent_id: str,
    crm_id: str,
    credentials: Credentials,
    crm_agent_id: str | None,
    last_sync_at: datetime | None,
) -> AgentCrmSettings:
    """Build the binding to store, keeping history when the provider is unchanged."""
    same_provider = existing is not None and existing.crm_id.lower() == crm_id.lower()
    if same_provider:
        return AgentCrmSettings(
            agent_id=agent_id,
            crm_id=crm_id,
            crm_agent_id=crm_agent_id or existing.crm_agent_id,
            credentials=credentials,
            connected_at=existing.connected_at,
            last_sync_at=last_sync_at or existing.last_sync_at,
        )
    return AgentCrmSettings(
        agent_id=agent_id,
        crm_id=crm_id,
        crm_agent_id=crm_agent_id,
        credentials=credentials,
        connected_at=utcnow(),
        last_sync_at=last_sync_at,
    )


class CredentialStore(ABC):
    """Abstract store of agent -> CRM bindings."""

    @abstractmethod
    async def get_connection(self, agent_id: str) -> AgentCrmSettings | None:
        """Return the agent's binding, or None when not connected."""
        ...

    @abstractmethod
    async def save_connection(
        self,
        agent_id: str,
        crm_id: str,
        credentials: Credentials,
        *,
        crm_agent_id: str | None = None,
        last_sync_at: datetime | None = None,
    ) -> AgentCrmSettings:
        """Create or replace the agent's binding and return what was stored."""
        ...

    @abstractmethod
    async def delete_connection(self, agent_id: str) -> None:
        """Remove the agent's binding. Deleting a missing binding is a no-op."""
        ...


class InMemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._bindings: dict[str, AgentCrmSettings] = {}

    async def get_connection(self, agent_id: str) -> AgentCrmSettings | None:
        binding = self._bindings.get(agent_id)
        return binding.model_copy(deep=True) if binding is not None else None

    async def save_connection(
        self,
        agent_id: str,
        crm_id: str,
        credentials: Credentials,
        *,
        crm_agent_id: str | None = None,
        last_sync_at: datetime | None = None,
    ) -> AgentCrmSettings:
        binding = _merge_binding(
            self._bindings.get(agent_id), agent_id, crm_id, credentials, crm_agent_id, last_sync_at
        )
        self._bindings[agent_id] = binding
        logger.info("crm.connection_saved", agent_id=agent_id, crm_id=crm_id)
        return binding.model_copy(deep=True)

    async def delete_connection(self, agent_id: str) -> None:
        if self._bindings.pop(agent_id, None) is not None:
            logger.info("crm.connection_deleted", agent_id=agent_id)


class RedisCredentialStore(CredentialStore):
    """Redis-backed binding store with sliding expiry.

    Args:
        redis_client: redis.asyncio client created with decode_responses=True.
        ttl_days: Idle lifetime of a binding; every read pushes it out again.
    """

    def __init__(self, redis_client: aioredis.Redis, ttl_days: int = 30) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_days * 24 * 60 * 60

    @staticmethod
    def _key(agent_id: str) -> str:
        return f"{KEY_PREFIX}{agent_id}"

    async def get_connection(self, agent_id: str) -> AgentCrmSettings | None:
        key = self._key(agent_id)
        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            binding = AgentCrmSettings.model_validate_json(raw)
        except ValidationError:
            logger.warning("crm.connection_corrupt", agent_id=agent_id, key=key)
            return None
        await self._redis.expire(key, self._ttl_seconds)
        return binding

    async def save_connection(
        self,
        agent_id: str,
        crm_id: str,
        credentials: Credentials,
        *,
        crm_agent_id: str | None = None,
        last_sync_at: datetime | None = None,
    ) -> AgentCrmSettings:
        existing = await self.get_connection(agent_id)
        binding = _merge_binding(
            existing, agent_id, crm_id, credentials, crm_agent_id, last_sync_at
        )
        await self._redis.set(
            self._key(agent_id), binding.model_dump_json(), ex=self._ttl_seconds
        )
        logger.info("crm.connection_saved", agent_id=agent_id, crm_id=crm_id)
        return binding

    async def delete_connection(self, agent_id: str) -> None:
        deleted = await self._redis.delete(self._key(agent_id))
        if deleted:
            logger.info("crm.connection_deleted", agent_id=agent_id)
