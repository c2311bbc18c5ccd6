"""AgentBox CRM adapter -- Reapit Foundations platform API.

Authentication: bearer access token on every request plus the pinned
api-version header Reapit requires. Pagination is pageNumber/pageSize with
an {_embedded, totalCount} envelope; single records are returned bare.
Activities are written as journal entries and inspections are read from
viewing appointments.
"""

from __future__ import annotations

from datetime import datetime, timedelta
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

API_VERSION = "2021-08-01"

# ── AgentBox Vocabulary ─────────────────────────────────────────────────────

# AgentBox has no contact type; the marketing mode is the closest signal.
AGENTBOX_CLASSIFICATIONS: dict[str, ContactClassification] = {
    "buying": ContactClassification.BUYER,
    "selling": ContactClassification.SELLER,
    "renting": ContactClassification.TENANT,
    "letting": ContactClassification.LANDLORD,
}

AGENTBOX_PROPERTY_TYPES: dict[str, PropertyType] = {
    "house": PropertyType.HOUSE,
    "flat": PropertyType.APARTMENT,
    "apartment": PropertyType.APARTMENT,
    "land": PropertyType.LAND,
}

AGENTBOX_LISTING_STATUSES: dict[str, ListingStatus] = {
    "forsale": ListingStatus.ACTIVE,
    "underoffer": ListingStatus.UNDER_CONTRACT,
    "under_offer": ListingStatus.UNDER_CONTRACT,
    "exchanged": ListingStatus.UNDER_CONTRACT,
    "sold": ListingStatus.SOLD,
    "completed": ListingStatus.SOLD,
    "withdrawn": ListingStatus.WITHDRAWN,
}

AGENTBOX_JOURNAL_TYPES: dict[ActivityType, str] = {
    ActivityType.NOTE: "note",
    ActivityType.CALL: "telephoneCall",
    ActivityType.EMAIL: "email",
    ActivityType.SMS: "sms",
    ActivityType.INSPECTION: "viewing",
    ActivityType.MEETING: "meeting",
}

AGENTBOX_PRIORITIES: dict[TaskPriority, str] = {
    TaskPriority.LOW: "low",
    TaskPriority.NORMAL: "normal",
    TaskPriority.HIGH: "high",
    TaskPriority.URGENT: "high",
}


class AgentBoxAdapter(HttpCRMAdapter):
    """AgentBox (Reapit) CRM adapter.

    Args:
        http_client: Shared httpx.AsyncClient.
        base_url: Override for https://platform.reapit.cloud.
    """

    crm_id = "agentbox"
    display_name = "AgentBox"
    default_base_url = "https://platform.reapit.cloud"
    whoami_path = "/negotiators/me"

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.access_token or ''}",
            "api-version": API_VERSION,
        }

    def _parse_whoami(self, payload: Any) -> tuple[str | None, str | None]:
        negotiator = as_dict(payload)
        return as_str(negotiator.get("name")), as_str(negotiator.get("officeName"))

    # ── Contacts ────────────────────────────────────────────────────────

    async def get_contacts(
        self,
        credentials: Credentials,
        page: int = 1,
        page_size: int = 100,
        modified_since: datetime | None = None,
    ) -> PagedResult[Contact]:
        params = drop_none(
            {
                "pageNumber": page,
                "pageSize": page_size,
                "modifiedFrom": isoformat(modified_since),
            }
        )
        payload = as_dict(await self._request_json("GET", "/contacts", credentials, params=params))
        contacts = [self._map_contact(item) for item in as_list(payload.get("_embedded"))]
        logger.debug("agentbox.contacts_fetched", page=page, count=len(contacts))
        return PagedResult[Contact](
            items=contacts,
            page=page,
            page_size=page_size,
            total_items=as_int(payload.get("totalCount")) or 0,
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
                "/contacts",
                credentials,
                params={"mobilePhone": normalize_phone(phone_number)},
            )
        )
        return [self._map_contact(item) for item in as_list(payload.get("_embedded"))]

    async def create_contact(self, credentials: Credentials, contact: Contact) -> Contact:
        payload = await self._request_json(
            "POST", "/contacts", credentials, json=self._contact_payload(contact)
        )
        created = self._map_contact(payload)
        logger.info("agentbox.contact_created", external_id=created.external_id)
        return created

    async def update_contact(
        self, credentials: Credentials, external_id: str, contact: Contact
    ) -> Contact:
        payload = await self._request_json(
            "PATCH", f"/contacts/{external_id}", credentials, json=self._contact_payload(contact)
        )
        logger.info("agentbox.contact_updated", external_id=external_id)
        return self._map_contact(payload)

    # ── Listings ────────────────────────────────────────────────────────

    async def get_properties(
        self, credentials: Credentials, page: int = 1, page_size: int = 100
    ) -> PagedResult[Property]:
        payload = as_dict(
            await self._request_json(
                "GET",
                "/properties",
                credentials,
                params={"pageNumber": page, "pageSize": page_size, "marketingMode": "selling"},
            )
        )
        return PagedResult[Property](
            items=[self._map_property(item) for item in as_list(payload.get("_embedded"))],
            page=page,
            page_size=page_size,
            total_items=as_int(payload.get("totalCount")) or 0,
        )

    async def get_property_by_id(self, credentials: Credentials, external_id: str) -> Property | None:
        payload = await self._request_json(
            "GET", f"/properties/{external_id}", credentials, allow_not_found=True
        )
        return self._map_property(payload) if isinstance(payload, dict) else None

    async def search_properties_by_address(
        self, credentials: Credentials, address_query: str
    ) -> list[Property]:
        payload = as_dict(
            await self._request_json(
                "GET", "/properties", credentials, params={"address": address_query}
            )
        )
        return [self._map_property(item) for item in as_list(payload.get("_embedded"))]

    # ── Activities & Tasks ──────────────────────────────────────────────

    async def log_activity(self, credentials: Credentials, activity: Activity) -> str:
        if activity.contact_id is not None:
            associated_type, associated_id = "contact", activity.contact_id
        else:
            associated_type, associated_id = "property", activity.property_id or ""

        description = activity.subject
        if activity.description:
            description = f"{activity.subject}\n\n{activity.description}"

        body = {
            "associatedType": associated_type,
            "associatedId": associated_id,
            "typeId": AGENTBOX_JOURNAL_TYPES.get(activity.type, "note"),
            "description": description,
            "timestamp": activity.timestamp.isoformat(),
        }
        payload = await self._request_json("POST", "/journalEntries", credentials, json=body)
        entry_id = as_str(as_dict(payload).get("id")) or ""
        logger.info("agentbox.journal_entry_created", entry_id=entry_id, type_id=body["typeId"])
        return entry_id

    async def create_task(self, credentials: Credentials, task: Task) -> str:
        body = drop_none(
            {
                "contactId": task.contact_id,
                "propertyId": task.property_id,
                "text": task.subject,
                "notes": task.description,
                "activate": isoformat(task.due_date),
                "priority": AGENTBOX_PRIORITIES.get(task.priority, "normal"),
                "negotiatorId": task.assigned_to_agent_id,
            }
        )
        payload = await self._request_json("POST", "/tasks", credentials, json=body)
        task_id = as_str(as_dict(payload).get("id")) or ""
        logger.info("agentbox.task_created", task_id=task_id)
        return task_id

    # ── Inspections ─────────────────────────────────────────────────────

    async def get_upcoming_inspections(
        self, credentials: Credentials, agent_id: str | None = None
    ) -> list[Inspection]:
        params: dict[str, Any] = {
            "start": utcnow().date().isoformat(),
            "type": "viewing",
        }
        if agent_id:
            params["negotiatorId"] = agent_id
        payload = as_dict(
            await self._request_json("GET", "/appointments", credentials, params=params)
        )
        return [self._map_inspection(item) for item in as_list(payload.get("_embedded"))]

    # ── Mapping ─────────────────────────────────────────────────────────

    def _map_contact(self, raw: Any) -> Contact:
        ab = as_dict(raw)
        forename = as_str(ab.get("forename"))
        surname = as_str(ab.get("surname"))
        now = utcnow()
        return Contact(
            external_id=as_str(ab.get("id")) or "",
            crm_source=self.crm_id,
            full_name=join_name(forename, surname),
            first_name=forename,
            last_name=surname,
            email=as_str(ab.get("email")),
            mobile=as_str(ab.get("mobilePhone")),
            phone=as_str(ab.get("homePhone")) or as_str(ab.get("workPhone")),
            classification=lookup(
                AGENTBOX_CLASSIFICATIONS,
                ab.get("marketingConsent"),
                ContactClassification.UNKNOWN,
            ),
            lead_source=as_str(ab.get("source")),
            created_at=parse_datetime(ab.get("created")) or now,
            updated_at=parse_datetime(ab.get("modified")) or now,
        )

    @staticmethod
    def _contact_payload(contact: Contact) -> dict[str, Any]:
        split_first, split_last = split_full_name(contact.full_name)
        return drop_none(
            {
                "forename": contact.first_name or split_first,
                "surname": contact.last_name or split_last,
                "email": contact.email,
                "mobilePhone": contact.mobile or contact.phone,
                "source": contact.lead_source,
            }
        )

    def _map_property(self, raw: Any) -> Property:
        ab = as_dict(raw)
        address = as_dict(ab.get("address"))
        selling = as_dict(ab.get("selling"))
        street = as_str(address.get("line1")) or ""
        building_number = as_str(address.get("buildingNumber"))
        if building_number:
            street = f"{building_number} {street}".strip()
        return Property(
            external_id=as_str(ab.get("id")) or "",
            crm_source=self.crm_id,
            address=street,
            suburb=as_str(address.get("line3")),
            state=as_str(address.get("line4")),
            postcode=as_str(address.get("postcode")),
            type=lookup(AGENTBOX_PROPERTY_TYPES, ab.get("type"), PropertyType.HOUSE),
            status=lookup(AGENTBOX_LISTING_STATUSES, selling.get("status"), ListingStatus.ACTIVE),
            price_from=as_float(selling.get("price")),
            bedrooms=as_int(ab.get("bedrooms")),
            bathrooms=as_int(ab.get("bathrooms")),
        )

    @staticmethod
    def _map_inspection(raw: Any) -> Inspection:
        ab = as_dict(raw)
        start = parse_datetime(ab.get("start")) or utcnow()
        negotiators = as_list(ab.get("negotiatorIds"))
        return Inspection(
            external_id=as_str(ab.get("id")) or "",
            property_id=as_str(ab.get("propertyId")) or "",
            start_time=start,
            end_time=parse_datetime(ab.get("end")) or start + timedelta(minutes=30),
            agent_id=as_str(negotiators[0]) if negotiators else None,
        )
