"""VaultRE CRM adapter -- MRI Vault REST API (used by Ray White, Harcourts and others).

Authentication: OAuth2 bearer token. Pagination is limit/offset with an
{items, total_count} envelope; page numbers are translated to offsets.
Numeric provider ids are normalized to strings. Activities are written as
notes with a category, and task priority is a 1-4 integer scale.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.crm_hub.adapters.base import HttpCRMAdapter
from src.crm_hub.adapters.mapping import (
    as_dict,
    as_float,
    as_int,
    as_list,
    as_str,
    drop_none,
    isoformat,
    join_name,
    lookup,
    normalize_phone,
    parse_datetime,
    split_full_name,
)
from src.crm_hub.schemas import (
    Activity,
    ActivityType,
    Contact,
    ContactClassification,
    Credentials,
    Inspection,
    ListingStatus,
    PagedResult,
    Property,
    PropertyType,
    Task,
    TaskPriority,
    utcnow,
)

logger = structlog.get_logger(__name__)

# ── VaultRE Vocabulary ──────────────────────────────────────────────────────

VAULTRE_CLASSIFICATIONS: dict[str, ContactClassification] = {
    "buyer": ContactClassification.BUYER,
    "seller": ContactClassification.SELLER,
    "vendor": ContactClassification.SELLER,
    "investor": ContactClassification.INVESTOR,
    "tenant": ContactClassification.TENANT,
    "landlord": ContactClassification.LANDLORD,
    "owner": ContactClassification.LANDLORD,
    "agent": ContactClassification.OTHER_AGENT,
}

VAULTRE_CONTACT_TYPES: dict[ContactClassification, str] = {
    ContactClassification.BUYER: "buyer",
    ContactClassification.SELLER: "seller",
    ContactClassification.INVESTOR: "investor",
    ContactClassification.TENANT: "tenant",
    ContactClassification.LANDLORD: "landlord",
    ContactClassification.OTHER_AGENT: "agent",
}

VAULTRE_PROPERTY_TYPES: dict[str, PropertyType] = {
    "house": PropertyType.HOUSE,
    "unit": PropertyType.UNIT,
    "apartment": PropertyType.APARTMENT,
    "townhouse": PropertyType.TOWNHOUSE,
    "land": PropertyType.LAND,
    "rural": PropertyType.RURAL,
    "commercial": PropertyType.COMMERCIAL,
}

VAULTRE_LISTING_STATUSES: dict[str, ListingStatus] = {
    "active": ListingStatus.ACTIVE,
    "under_offer": ListingStatus.UNDER_CONTRACT,
    "under offer": ListingStatus.UNDER_CONTRACT,
    "conditional": ListingStatus.UNDER_CONTRACT,
    "sold": ListingStatus.SOLD,
    "settled": ListingStatus.SOLD,
    "withdrawn": ListingStatus.WITHDRAWN,
    "off_market": ListingStatus.OFF_MARKET,
}

VAULTRE_NOTE_CATEGORIES: dict[ActivityType, str] = {
    ActivityType.NOTE: "Note",
    ActivityType.CALL: "Phone Call",
    ActivityType.EMAIL: "Email",
    ActivityType.SMS: "SMS",
    ActivityType.INSPECTION: "Inspection",
    ActivityType.MEETING: "Meeting",
}

VAULTRE_PRIORITIES: dict[TaskPriority, int] = {
    TaskPriority.LOW: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.HIGH: 3,
    TaskPriority.URGENT: 4,
}


def _vault_timestamp(value: datetime) -> str:
    """VaultRE wants second-precision UTC with a literal Z."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class VaultREAdapter(HttpCRMAdapter):
    """VaultRE CRM adapter.

    Args:
        http_client: Shared httpx.AsyncClient.
        base_url: Override for https://api.vaultre.com.au/api/v1.3.
    """

    crm_id = "vaultre"
    display_name = "VaultRE"
    default_base_url = "https://api.vaultre.com.au/api/v1.3"
    whoami_path = "/me"

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if credentials.access_token:
            headers["Authorization"] = f"Bearer {credentials.access_token}"
        return headers

    def _parse_whoami(self, payload: Any) -> tuple[str | None, str | None]:
        user = as_dict(payload)
        return as_str(user.get("full_name")), as_str(user.get("office_name"))

    # ── Contacts ────────────────────────────────────────────────────────

    async def get_contacts(
        self,
        credentials: Credentials,
        page: int = 1,
        page_size: int = 100,
        modified_since: datetime | None = None,
    ) -> PagedResult[Contact]:
        params: dict[str, Any] = {"limit": page_size, "offset": (page - 1) * page_size}
        if modified_since is not None:
            params["modified_since"] = _vault_timestamp(modified_since)
        payload = as_dict(await self._request_json("GET", "/contacts", credentials, params=params))
        contacts = [self._map_contact(item) for item in as_list(payload.get("items"))]
        logger.debug("vaultre.contacts_fetched", page=page, count=len(contacts))
        return PagedResult[Contact](
            items=contacts,
            page=page,
            page_size=page_size,
            total_items=as_int(payload.get("total_count")) or 0,
        )

    async def get_contact_by_id(self, credentials: Credentials, external_id: str) -> Contact | None:
        payload = await self._request_json(
            "GET", f"/contacts/{external_id}", credentials, allow_not_found=True
        )
        return self._map_contact(payload) if isinstance(payload, dict) else None

    async def search_contacts_by_phone(
        self, credentials: Credentials, phone_number: str
    ) -> list[Contact]:
        payload = as_dict(
            await self._request_json(
                "GET",
                "/contacts/search",
                credentials,
                params={"phone": normalize_phone(phone_number)},
            )
        )
        return [self._map_contact(item) for item in as_list(payload.get("items"))]

    async def create_contact(self, credentials: Credentials, contact: Contact) -> Contact:
        payload = await self._request_json(
            "POST", "/contacts", credentials, json=self._contact_payload(contact)
        )
        created = self._map_contact(payload)
        logger.info("vaultre.contact_created", external_id=created.external_id)
        return created

    async def update_contact(
        self, credentials: Credentials, external_id: str, contact: Contact
    ) -> Contact:
        payload = await self._request_json(
            "PUT", f"/contacts/{external_id}", credentials, json=self._contact_payload(contact)
        )
        logger.info("vaultre.contact_updated", external_id=external_id)
        return self._map_contact(payload)

    # ── Listings ────────────────────────────────────────────────────────

    async def get_properties(
        self, credentials: Credentials, page: int = 1, page_size: int = 100
    ) -> PagedResult[Property]:
        payload = as_dict(
            await self._request_json(
                "GET",
                "/listings",
                credentials,
                params={
                    "limit": page_size,
                    "offset": (page - 1) * page_size,
                    "status": "active",
                },
            )
        )
        return PagedResult[Property](
            items=[self._map_property(item) for item in as_list(payload.get("items"))],
            page=page,
            page_size=page_size,
            total_items=as_int(payload.get("total_count")) or 0,
        )

    async def get_property_by_id(self, credentials: Credentials, external_id: str) -> Property | None:
        payload = await self._request_json(
            "GET", f"/listings/{external_id}", credentials, allow_not_found=True
        )
        return self._map_property(payload) if isinstance(payload, dict) else None

    async def search_properties_by_address(
        self, credentials: Credentials, address_query: str
    ) -> list[Property]:
        payload = as_dict(
            await self._request_json(
                "GET", "/listings/search", credentials, params={"address": address_query}
            )
        )
        return [self._map_property(item) for item in as_list(payload.get("items"))]

    # ── Activities & Tasks ──────────────────────────────────────────────

    async def log_activity(self, credentials: Credentials, activity: Activity) -> str:
        body = drop_none(
            {
                "contact_id": activity.contact_id,
                "listing_id": activity.property_id,
                "category": VAULTRE_NOTE_CATEGORIES.get(activity.type, "Note"),
                "subject": activity.subject,
                "body": activity.description,
                "activity_date": activity.timestamp.isoformat(),
            }
        )
        payload = await self._request_json("POST", "/notes", credentials, json=body)
        note_id = as_str(as_dict(payload).get("id")) or ""
        logger.info("vaultre.note_created", note_id=note_id, category=body["category"])
        return note_id

    async def create_task(self, credentials: Credentials, task: Task) -> str:
        body = drop_none(
            {
                "contact_id": task.contact_id,
                "listing_id": task.property_id,
                "subject": task.subject,
                "description": task.description,
                "due_date": isoformat(task.due_date),
                "priority": VAULTRE_PRIORITIES.get(task.priority, 2),
                "assigned_to_user_id": task.assigned_to_agent_id,
            }
        )
        payload = await self._request_json("POST", "/tasks", credentials, json=body)
        task_id = as_str(as_dict(payload).get("id")) or ""
        logger.info("vaultre.task_created", task_id=task_id)
        return task_id

    # ── Inspections ─────────────────────────────────────────────────────

    async def get_upcoming_inspections(
        self, credentials: Credentials, agent_id: str | None = None
    ) -> list[Inspection]:
        params: dict[str, Any] = {
            "from_date": utcnow().date().isoformat(),
            "status": "scheduled",
        }
        if agent_id:
            params["agent_id"] = agent_id
        payload = as_dict(
            await self._request_json("GET", "/inspections", credentials, params=params)
        )
        return [self._map_inspection(item) for item in as_list(payload.get("items"))]

    # ── Mapping ─────────────────────────────────────────────────────────

    def _map_contact(self, raw: Any) -> Contact:
        vault = as_dict(raw)
        first_name = as_str(vault.get("first_name"))
        last_name = as_str(vault.get("last_name"))
        now = utcnow()
        return Contact(
            external_id=as_str(vault.get("id")) or "",
            crm_source=self.crm_id,
            full_name=as_str(vault.get("display_name")) or join_name(first_name, last_name),
            first_name=first_name,
            last_name=last_name,
            email=as_str(vault.get("email")),
            phone=as_str(vault.get("phone")),
            mobile=as_str(vault.get("mobile")),
            classification=lookup(
                VAULTRE_CLASSIFICATIONS,
                vault.get("contact_type"),
                ContactClassification.UNKNOWN,
            ),
            lead_source=as_str(vault.get("source")),
            last_contact_date=parse_datetime(vault.get("last_contact_date")),
            created_at=parse_datetime(vault.get("created_at")) or now,
            updated_at=parse_datetime(vault.get("updated_at")) or now,
        )

    @staticmethod
    def _contact_payload(contact: Contact) -> dict[str, Any]:
        split_first, split_last = split_full_name(contact.full_name)
        return drop_none(
            {
                "first_name": contact.first_name or split_first,
                "last_name": contact.last_name or split_last,
                "email": contact.email,
                "phone": contact.phone,
                "mobile": contact.mobile,
                "contact_type": VAULTRE_CONTACT_TYPES.get(contact.classification, "other"),
                "source": contact.lead_source,
            }
        )

    def _map_property(self, raw: Any) -> Property:
        vault = as_dict(raw)
        return Property(
            external_id=as_str(vault.get("id")) or "",
            crm_source=self.crm_id,
            address=as_str(vault.get("full_address")) or "",
            suburb=as_str(vault.get("suburb")),
            state=as_str(vault.get("state")),
            postcode=as_str(vault.get("postcode")),
            type=lookup(VAULTRE_PROPERTY_TYPES, vault.get("property_type"), PropertyType.HOUSE),
            status=lookup(VAULTRE_LISTING_STATUSES, vault.get("status"), ListingStatus.ACTIVE),
            price_from=as_float(vault.get("price_from")),
            price_to=as_float(vault.get("price_to")),
            price_display=as_str(vault.get("price_display")),
            bedrooms=as_int(vault.get("bedrooms")),
            bathrooms=as_int(vault.get("bathrooms")),
            car_spaces=as_int(vault.get("car_spaces")),
            agent_id=as_str(vault.get("agent_id")),
            listed_date=parse_datetime(vault.get("listed_date")),
        )

    @staticmethod
    def _map_inspection(raw: Any) -> Inspection:
        vault = as_dict(raw)
        start = parse_datetime(vault.get("start_time")) or utcnow()
        return Inspection(
            external_id=as_str(vault.get("id")) or "",
            property_id=as_str(vault.get("listing_id")) or "",
            property_address=as_str(vault.get("address")),
            start_time=start,
            end_time=parse_datetime(vault.get("end_time")) or start + timedelta(minutes=30),
            agent_id=as_str(vault.get("agent_id")),
            rsvp_count=as_int(vault.get("attendee_count")),
        )
