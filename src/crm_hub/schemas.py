"""Pydantic schemas for the normalized CRM model.

Defines the provider-agnostic shapes every adapter produces and consumes:
- Enums: ContactClassification, PropertyType, ListingStatus, ActivityType,
  TaskPriority, UpsertOutcome
- Records: Contact, Property, Activity, Task, Inspection
- Connection: Credentials, ConnectionResult, AgentCrmSettings, AdapterInfo
- Results: PagedResult[T], ImportResult, ContactUpsertCounts

Provider quirks never leak past these types. A contact is identified within
the integration layer by (external_id, crm_source), not globally.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class ContactClassification(str, Enum):
    """What role a contact plays for the agent."""

    UNKNOWN = "unknown"
    BUYER = "buyer"
    SELLER = "seller"
    INVESTOR = "investor"
    TENANT = "tenant"
    LANDLORD = "landlord"
    VENDOR = "vendor"
    OTHER_AGENT = "other_agent"


class PropertyType(str, Enum):
    HOUSE = "house"
    UNIT = "unit"
    APARTMENT = "apartment"
    TOWNHOUSE = "townhouse"
    LAND = "land"
    RURAL = "rural"
    COMMERCIAL = "commercial"


class ListingStatus(str, Enum):
    ACTIVE = "active"
    UNDER_CONTRACT = "under_contract"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"
    OFF_MARKET = "off_market"


class ActivityType(str, Enum):
    """Kind of interaction logged against a contact or property."""

    NOTE = "note"
    CALL = "call"
    EMAIL = "email"
    SMS = "sms"
    INSPECTION = "inspection"
    MEETING = "meeting"
    TASK = "task"


class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class UpsertOutcome(str, Enum):
    """Result of writing one imported contact to the contact repository."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


# ── Normalized Records ──────────────────────────────────────────────────────


class Contact(BaseModel):
    """A person record normalized from any CRM."""

    external_id: str = ""
    crm_source: str = ""
    full_name: str = ""
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    mobile: str | None = None
    classification: ContactClassification = ContactClassification.UNKNOWN
    lead_source: str | None = None
    last_contact_date: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    custom_fields: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        """Identity within the integration layer: (external_id, crm_source)."""
        return (self.external_id, self.crm_source)


class Property(BaseModel):
    """A listing normalized from any CRM."""

    external_id: str = ""
    crm_source: str = ""
    address: str = ""
    suburb: str | None = None
    state: str | None = None
    postcode: str | None = None
    type: PropertyType = PropertyType.HOUSE
    status: ListingStatus = ListingStatus.ACTIVE
    price_from: float | None = None
    price_to: float | None = None
    price_display: str | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    car_spaces: int | None = None
    agent_id: str | None = None
    listed_date: datetime | None = None


class Activity(BaseModel):
    """An interaction to log to the CRM (call, note, email...)."""

    contact_id: str | None = None
    property_id: str | None = None
    type: ActivityType = ActivityType.NOTE
    subject: str = ""
    description: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    duration_seconds: int | None = Field(default=None, ge=0)
    metadata: dict[str, str] = Field(default_factory=dict)


class Task(BaseModel):
    """A follow-up task to create in the CRM."""

    contact_id: str | None = None
    property_id: str | None = None
    subject: str = ""
    description: str | None = None
    due_date: datetime | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    assigned_to_agent_id: str | None = None


class Inspection(BaseModel):
    """An open home or private viewing."""

    external_id: str = ""
    property_id: str = ""
    property_address: str | None = None
    start_time: datetime
    end_time: datetime
    agent_id: str | None = None
    rsvp_count: int | None = None


# ── Connection Schemas ──────────────────────────────────────────────────────


class Credentials(BaseModel):
    """Opaque-to-the-hub credential bag for one agent's CRM account.

    Frozen: adapters read credentials on every call but never change them.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str
    api_key: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expiry: datetime | None = None
    base_url: str | None = None
    additional_settings: dict[str, str] = Field(default_factory=dict)


class ConnectionResult(BaseModel):
    success: bool
    error_message: str | None = None
    agent_name: str | None = None
    office_name: str | None = None


class AdapterInfo(BaseModel):
    crm_id: str
    display_name: str


class AgentCrmSettings(BaseModel):
    """Binding of one agent to exactly one CRM provider."""

    agent_id: str
    crm_id: str
    crm_agent_id: str | None = None  # The agent's own id inside the provider
    credentials: Credentials
    connected_at: datetime = Field(default_factory=utcnow)
    last_sync_at: datetime | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class PagedResult(BaseModel, Generic[T]):
    """One page of a provider listing.

    total_pages and has_next_page are derived from the stored fields.
    """

    items: list[T] = Field(default_factory=list)
    page: int = 1
    page_size: int = 100
    total_items: int = 0

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_items / self.page_size)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages


class ContactUpsertCounts(BaseModel):
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome == UpsertOutcome.INSERTED:
            self.inserted += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1


class ImportResult(BaseModel):
    """Outcome of a bulk contact import.

    A failed import always reports zero counts: nothing is committed when
    pagination aborts part way.
    """

    success: bool
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    pages_fetched: int = 0
    duration_ms: float = 0.0
    error_message: str | None = None
