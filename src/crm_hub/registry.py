"""Wiring for the CRM integration hub.

Builds the provider adapters, the credential store and the hub from Settings.
All adapters share one long-lived httpx.AsyncClient and a Redis-backed
credential store shares one client per process; close both on shutdown with
close_http_client() and close_redis_client().
"""

from __future__ import annotations

import httpx
import redis.asyncio as aioredis
import structlog

from src.crm_hub.adapters import AgentBoxAdapter, CRMAdapter, RexAdapter, VaultREAdapter
from src.crm_hub.config import CredentialBackend, Settings, get_settings
from src.crm_hub.contacts import ContactRepository, InMemoryContactRepository
from src.crm_hub.credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    RedisCredentialStore,
)
from src.crm_hub.hub import CRMIntegrationHub

logger = structlog.get_logger(__name__)

# ── Shared clients (lazy init) ──────────────────────────────────────────────

_http_client: httpx.AsyncClient | None = None
_redis_client: aioredis.Redis | None = None


def get_http_client(settings: Settings | None = None) -> httpx.AsyncClient:
    """Get or create the shared provider HTTP client."""
    global _http_client
    if _http_client is None:
        settings = settings or get_settings()
        _http_client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=settings.CRM_HTTP_TIMEOUT,
        )
    return _http_client


async def close_http_client() -> None:
    """Close the shared provider HTTP client."""
    global _http_client
    if _http_client:
        await _http_client.aclose()
        _http_client = None


def build_adapters(http_client: httpx.AsyncClient, settings: Settings) -> list[CRMAdapter]:
    return [
        RexAdapter(http_client, base_url=settings.REX_BASE_URL),
        AgentBoxAdapter(http_client, base_url=settings.AGENTBOX_BASE_URL),
        VaultREAdapter(http_client, base_url=settings.VAULTRE_BASE_URL),
    ]


def build_credential_store(settings: Settings) -> CredentialStore:
    """In-memory by default; the Redis store reuses one client per process."""
    global _redis_client
    if settings.CRM_SETTINGS_STORE != CredentialBackend.redis:
        return InMemoryCredentialStore()
    if _redis_client is None:
        _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("crm.redis_client_created")
    return RedisCredentialStore(_redis_client, ttl_days=settings.CRM_SETTINGS_TTL_DAYS)


async def close_redis_client() -> None:
    """Close the credential store's Redis client, if one was opened."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def create_hub(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    credential_store: CredentialStore | None = None,
    contact_repository: ContactRepository | None = None,
) -> CRMIntegrationHub:
    """Assemble a CRMIntegrationHub from settings.

    Any collaborator passed in explicitly replaces the one built from
    settings, which is how the platform plugs in its own contact store.
    """
    settings = settings or get_settings()
    http_client = http_client or get_http_client(settings)
    credential_store = credential_store or build_credential_store(settings)
    contact_repository = contact_repository or InMemoryContactRepository()

    logger.info(
        "crm.hub_wiring",
        credential_store=type(credential_store).__name__,
        contact_repository=type(contact_repository).__name__,
    )
    return CRMIntegrationHub(
        build_adapters(http_client, settings),
        credential_store,
        contact_repository,
        page_size=settings.CRM_IMPORT_PAGE_SIZE,
        page_delay_seconds=settings.CRM_IMPORT_PAGE_DELAY_SECONDS,
    )
