"""Rex CRM adapter -- rexsoftware.com REST API.

Authentication: bearer access token when present, otherwise the account's
API key in X-Api-Key. Pagination is page/per_page with a {data, meta}
envelope; single records arrive wrapped in {data: ...}.
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

# ── Rex Vocabulary ──────────────────────────────────────────────────────────

REX_CLASSIFICATIONS: dict[str, ContactClassification] = {
    "buyer": ContactClassification.BUYER,
    "seller": ContactClassification.SELLER,
    "vendor": ContactClassification.SELLER,
    "investor": ContactClassification.INVESTOR,
    "tenant": ContactClassification.TENANT,
    "landlord": ContactClassification.LANDLORD,
    "agent": ContactClassification.OTHER_AGENT,
}

REX_CONTACT_TYPES: dict[ContactClassification, str] = {
    ContactClassification.BUYER: "buyer",
    ContactClassification.SELLER: "seller",
    ContactClassification.INVESTOR: "investor",
    ContactClassification.TENANT: "tenant",
    ContactClassification.LANDLORD: "landlord",
    ContactClassification.OTHER_AGENT: "agent",
}

REX_PROPERTY_TYPES: dict[str, PropertyType] = {
    "house": PropertyType.HOUSE,
    "unit": PropertyType.UNIT,
    "apartment": PropertyType.APARTMENT,
    "townhouse": PropertyType.TOWNHOUSE,
    "land": PropertyType.LAND,
    "rural": PropertyType.RURAL,
    "commercial": PropertyType.COMMERCIAL,
}

REX_LISTING_STATUSES: dict[str, ListingStatus] = {
    "active": ListingStatus.ACTIVE,
    "under_contract": ListingStatus.UNDER_CONTRACT,
    "under contract": ListingStatus.UNDER_CONTRACT,
    "sold": ListingStatus.SOLD,
    "withdrawn": ListingStatus.WITHDRAWN,
    "off_market": ListingStatus.OFF_MARKET,
}

REX_ACTIVITY_TYPES: dict[ActivityType, str] = {
    ActivityType.NOTE: "note",
    ActivityType.CALL: "call",
    ActivityType.EMAIL: "email",
    ActivityType.SMS: "sms",
    ActivityType.INSPECTION: "inspection",
    ActivityType.MEETING: "meeting",
    ActivityType.TASK: "task",
}

REX_PRIORITIES: dict[TaskPriority, str] = {
    TaskPriority.LOW: "low",
    TaskPriority.NORMAL: "normal",
    TaskPriority.HIGH: "high",
    TaskPriority.URGENT: "urgent",
}


class RexAdapter(HttpCRMAdapter):
    """Rex CRM adapter.

    Args:
        http_client: Shared httpx.AsyncClient.
        base_url: Override for https://api.rexsoftware.com/v1.
    """

    crm_id = "rex"
    display_name = "Rex"
    default_base_url = "https://api.rexsoftware.com/v1"
    whoami_path = "/account"

    def _auth_headers(self, credentials: Credentials) -> dict[str, str]:
        if credentials.access_token:
            return {"Authorization": f"Bearer {credentials.access_token}"}
        if credentials.api_key:
            return {"X-Api-Key": credentials.api_key}
        return {}

    def _parse_whoami(self, payload: Any) -> tuple[str | None, str | None]:
        account = as_dict(payload)
        return as_str(account.get("name")), as_str(account.get("office_name"))

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
                "page": page,
                "per_page": page_size,
                "modified_since": isoformat(modified_since),
            }
        )
        payload = as_dict(await self._request_json("GET", "/contacts", credentials, params=params))
        meta = as_dict(payload.get("meta"))
        contacts = [self._map_contact(item) for item in as_list(payload.get("data"))]
        logger.debug("rex.contacts_fetched", page=page, count=len(contacts))
        return PagedResult[Contact](
            items=contacts,
            page=as_int(meta.get("current_page")) or page,
            page_size=page_size,
            total_items=as_int(meta.get("total")) or 0,
        )

    async def get_contact_by_id(self, credentials: Credentials, external_id: str) -> Contact | None:
        payload = await self._request_json(
            "GET", f"/contacts/{external_id}", credentials, allow_not_found=True
        )
        data = as_dict(payload).get("data")
        return self._map_contact(data) if isinstance(data, dict) else None

    async def search_contacts_by_phone(
        self, credentials: Credentials, phone_number: str
    ) -> list[Contact]:
        payload = as_dict(
            await self._request_json(
                "GET",
                "/contacts",
                credentials,
                params={"phone": normalize_phone(phone_number)},
            )
        )
        return [self._map_contact(item) for item in as_list(payload.get("data"))]

    async def create_contact(self, credentials: Credentials, contact: Contact) -> Contact:
        payload = await self._request_json(
            "POST", "/contacts", credentials, json=self._contact_payload(contact)
        )
        created = self._map_contact(as_dict(payload).get("data"))
        logger.info("rex.contact_created", external_id=created.external_id)
        return created

    async def update_contact(
        self, credentials: Credentials, external_id: str, contact: Contact
    ) -> Contact:
        payload = await self._request_json(
            "PUT", f"/contacts/{external_id}", credentials, json=self._contact_payload(contact)
        )
        logger.info("rex.contact_updated", external_id=external_id)
        return self._map_contact(as_dict(payload).get("data"))

    # ── Listings ────────────────────────────────────────────────────────

    async def get_properties(
        self, credentials: Credentials, page: int = 1, page_size: int = 100
    ) -> PagedResult[Property]:
        payload = as_dict(
            await self._request_json(
                "GET",
                "/listings",
                credentials,
                params={"page": page, "per_page": page_size, "status": "active"},
            )
        )
        meta = as_dict(payload.get("meta"))
        return PagedResult[Property](
            items=[self._map_property(item) for item in as_list(payload.get("data"))],
            page=as_int(meta.get("current_page")) or page,
            page_size=page_size,
            total_items=as_int(meta.get("total")) or 0,
        )

    async def get_property_by_id(self, credentials: Credentials, external_id: str) -> Property | None:
        payload = await self._request_json(
            "GET", f"/listings/{external_id}", credentials, allow_not_found=True
        )
        data = as_dict(payload).get("data")
        return self._map_property(data) if isinstance(data, dict) else None

    async def search_properties_by_address(
        self, credentials: Credentials, address_query: str
    ) -> list[Property]:
        payload = as_dict(
            await self._request_json(
                "GET", "/listings", credentials, params={"address": address_query}
            )
        )
        return [self._map_property(item) for item in as_list(payload.get("data"))]

    # ── Activities & Tasks ──────────────────────────────────────────────

    async def log_activity(self, credentials: Credentials, activity: Activity) -> str:
        body = drop_none(
            {
                "contact_id": activity.contact_id,
                "listing_id": activity.property_id,
                "type": REX_ACTIVITY_TYPES.get(activity.type, "note"),
                "subject": activity.subject,
                "notes": activity.description,
                "timestamp": activity.timestamp.isoformat(),
                "duration_minutes": (
                    activity.duration_seconds // 60
                    if activity.duration_seconds is not None
                    else None
                ),
            }
        )
        payload = await self._request_json("POST", "/activities", credentials, json=body)
        activity_id = as_str(as_dict(as_dict(payload).get("data")).get("id")) or ""
        logger.info("rex.activity_logged", activity_id=activity_id, type=body["type"])
        return activity_id

    async def create_task(self, credentials: Credentials, task: Task) -> str:
        body = drop_none(
            {
                "contact_id": task.contact_id,
                "listing_id": task.property_id,
                "subject": task.subject,
                "description": task.description,
                "due_date": isoformat(task.due_date),
                "priority": REX_PRIORITIES.get(task.priority, "normal"),
                "assigned_to": task.assigned_to_agent_id,
            }
        )
        payload = await self._request_json("POST", "/tasks", credentials, json=body)
        task_id = as_str(as_dict(as_dict(payload).get("data")).get("id")) or ""
        logger.info("rex.task_created", task_id=task_id)
        return task_id

    # ── Inspections ─────────────────────────────────────────────────────

    async def get_upcoming_inspections(
        self, credentials: Credentials, agent_id: str | None = None
    ) -> list[Inspection]:
        params: dict[str, Any] = {"upcoming": "true"}
        if agent_id:
            params["agent_id"] = agent_id
        payload = as_dict(
            await self._request_json("GET", "/inspections", credentials, params=params)
        )
        return [self._map_inspection(item) for item in as_list(payload.get("data"))]

    # ── Mapping ─────────────────────────────────────────────────────────

    def _map_contact(self, raw: Any) -> Contact:
        rex = as_dict(raw)
        first_name = as_str(rex.get("first_name"))
        last_name = as_str(rex.get("last_name"))
        now = utcnow()
        return Contact(
            external_id=as_str(rex.get("id")) or "",
            crm_source=self.crm_id,
            full_name=join_name(first_name, last_name),
            first_name=first_name,
            last_name=last_name,
            email=as_str(rex.get("email")),
            phone=as_str(rex.get("phone")),
            mobile=as_str(rex.get("mobile")),
            classification=lookup(
                REX_CLASSIFICATIONS, rex.get("type"), ContactClassification.UNKNOWN
            ),
            lead_source=as_str(rex.get("source")),
            last_contact_date=parse_datetime(rex.get("last_contacted_at")),
            created_at=parse_datetime(rex.get("created_at")) or now,
            updated_at=parse_datetime(rex.get("updated_at")) or now,
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
                "type": REX_CONTACT_TYPES.get(contact.classification, "other"),
                "source": contact.lead_source,
            }
        )

    def _map_property(self, raw: Any) -> Property:
        rex = as_dict(raw)
        return Property(
            external_id=as_str(rex.get("id")) or "",
            crm_source=self.crm_id,
            address=as_str(rex.get("address")) or "",
            suburb=as_str(rex.get("suburb")),
            state=as_str(rex.get("state")),
            postcode=as_str(rex.get("postcode")),
            type=lookup(REX_PROPERTY_TYPES, rex.get("property_type"), PropertyType.HOUSE),
            status=lookup(REX_LISTING_STATUSES, rex.get("status"), ListingStatus.ACTIVE),
            price_from=as_float(rex.get("price_from")),
            price_to=as_float(rex.get("price_to")),
            price_display=as_str(rex.get("price_display")),
            bedrooms=as_int(rex.get("bedrooms")),
            bathrooms=as_int(rex.get("bathrooms")),
            car_spaces=as_int(rex.get("car_spaces")),
            agent_id=as_str(rex.get("agent_id")),
            listed_date=parse_datetime(rex.get("listed_at")),
        )

    @staticmethod
    def _map_inspection(raw: Any) -> Inspection:
        rex = as_dict(raw)
        start = parse_datetime(rex.get("start_time")) or utcnow()
        return Inspection(
            external_id=as_str(rex.get("id")) or "",
            property_id=as_str(rex.get("listing_id")) or "",
            property_address=as_str(rex.get("address")),
            start_time=start,
            end_time=parse_datetime(rex.get("end_time")) or start + timedelta(minutes=30),
            agent_id=as_str(rex.get("agent_id")),
            rsvp_count=as_int(rex.get("rsvp_count")),
        )
