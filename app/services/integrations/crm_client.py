"""
Field-service CRM client (customers, locations, capacity, jobs, bookings).

Every call resolves the tenant's CrmConfig, authenticates with an OAuth
client-credentials token (cached in-process until 60s before expiry) and sends
the `ST-App-Key` header. Any transport error, non-2xx status or malformed body
raises CrmError; callers decide whether that means a handoff.

Availability never invents slots: no capacity means an empty list.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import CrmConfig
from app.services.integrations.http_client import create_httpx_client
from app.services.parsing.address_parsing import AddressParts, parse_address_for_search

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 60
PHONE_SEARCH_LOCATION_CUSTOMERS = 3
ADDRESS_SEARCH_CUSTOMERS = 5

# One rotating 2-hour arrival window per available day
TIME_WINDOWS = [
    ("08:00", "10:00", "8-10 AM"),
    ("10:00", "12:00", "10 AM-12 PM"),
    ("12:00", "14:00", "12-2 PM"),
    ("14:00", "16:00", "2-4 PM"),
]

# (crm_tenant_id, client_id) -> (access_token, expires_at epoch seconds)
_token_cache: dict[tuple[str, str], tuple[str, float]] = {}


class CrmError(Exception):
    """CRM call failed (network, non-2xx status or unexpected body)."""

    def __init__(self, message: str, status_code: int | None = None, operation: str | None = None):
        self.status_code = status_code
        self.operation = operation
        super().__init__(message)


class CrmNotConfigured(CrmError):
    """Tenant has no enabled CRM credentials."""


@dataclass
class CrmCustomer:
    id: str
    name: str
    address: str = ""


@dataclass
class CrmLocation:
    id: str
    customer_id: str
    name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""

    @property
    def display_address(self) -> str:
        return ", ".join(p for p in (self.street, self.city) if p)


@dataclass
class CustomerSearch:
    customers: list[CrmCustomer] = field(default_factory=list)
    locations: list[CrmLocation] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.customers or self.locations)

    def locations_for(self, customer_id: str) -> list[CrmLocation]:
        return [loc for loc in self.locations if loc.customer_id == customer_id]

    def customer(self, customer_id: str) -> CrmCustomer | None:
        return next((c for c in self.customers if c.id == customer_id), None)


@dataclass
class AvailabilitySlot:
    date: str  # YYYY-MM-DD
    day_of_week: str
    start_time: str  # HH:MM
    end_time: str
    arrival_window: str
    display_text: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AvailabilitySlot":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__})


@dataclass
class NewCustomer:
    customer_id: str
    location_id: str


@dataclass
class JobRecord:
    job_id: str
    appointment_id: str | None


@dataclass
class HandoffRequest:
    """Human-visible booking created when automation stops."""

    tenant_id: int
    tenant_name: str
    conversation_id: int
    contact_name: str
    contact_phone: str
    contact_email: str | None
    last_inbound_message: str
    summary: str


def normalize_phone(phone: str | None) -> str:
    """
    Normalize to the CRM's 10-digit format (no +1 country code).

    Example:
        "+1 (480) 555-0100" -> "4805550100"
    """
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    if len(digits) != 10:
        logger.info(f"Phone normalization: unusual format {phone!r} -> {digits!r}")
    return digits


def _as_id(value: Any) -> int | str:
    """CRM ids are numeric; keep non-numeric values as given."""
    s = str(value)
    return int(s) if s.isdigit() else s


def _customer_from(data: dict) -> CrmCustomer:
    address = data.get("address") or {}
    return CrmCustomer(
        id=str(data["id"]),
        name=data.get("name") or "Unknown",
        address=", ".join(p for p in (address.get("street"), address.get("city")) if p),
    )


def _location_from(data: dict) -> CrmLocation:
    address = data.get("address") or {}
    return CrmLocation(
        id=str(data["id"]),
        customer_id=str(data.get("customerId", "")),
        name=data.get("name") or "",
        street=address.get("street") or "",
        city=address.get("city") or "",
        state=address.get("state") or "",
        zip=address.get("zip") or "",
    )


def clear_token_cache() -> None:
    _token_cache.clear()


class FieldServiceCrmClient:
    """Async CRM client bound to a DB session (for per-tenant credentials)."""

    def __init__(self, db: Session, http_client: httpx.AsyncClient | None = None):
        self.db = db
        self._http_client = http_client

    # ---- plumbing ----

    def _get_config(self, tenant_id: int) -> CrmConfig:
        config = self.db.execute(
            select(CrmConfig).where(CrmConfig.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if config is None or not config.enabled:
            raise CrmNotConfigured(f"CRM not configured for tenant {tenant_id}")
        return config

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, **kwargs)
        async with create_httpx_client() as client:
            return await client.request(method, url, **kwargs)

    async def _get_token(self, config: CrmConfig) -> str:
        cache_key = (config.crm_tenant_id, config.client_id)
        cached = _token_cache.get(cache_key)
        if cached and cached[1] > time.time() + TOKEN_REFRESH_MARGIN_SECONDS:
            return cached[0]

        try:
            response = await self._send(
                "POST",
                f"{config.api_base_url}/connect/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise CrmError(f"Token request failed: {e}", operation="token") from e

        if response.status_code >= 400:
            raise CrmError(
                f"Token request failed: {response.status_code}",
                status_code=response.status_code,
                operation="token",
            )
        try:
            data = response.json()
            token = data["access_token"]
            expires_in = float(data.get("expires_in", 900))
        except (ValueError, KeyError, TypeError) as e:
            raise CrmError(f"Malformed token response: {e}", operation="token") from e

        _token_cache[cache_key] = (token, time.time() + expires_in)
        return token

    async def _request(
        self,
        config: CrmConfig,
        method: str,
        path: str,
        operation: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        """
        Call `{api_base_url}/{path}` (path relative to the tenant, e.g. "crm/v2/tenant/{id}/customers").

        Raises:
            CrmError: On transport errors, non-2xx statuses or a non-JSON body
        """
        token = await self._get_token(config)
        headers = {
            "Authorization": f"Bearer {token}",
            "ST-App-Key": config.app_key,
            "Content-Type": "application/json",
        }
        url = f"{config.api_base_url}/{path}"
        try:
            response = await self._send(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"CRM {operation} failed: {type(e).__name__}: {e}")
            raise CrmError(f"CRM {operation} failed: {e}", operation=operation) from e

        if response.status_code >= 400:
            logger.error(f"CRM {operation} failed: {response.status_code} - {response.text[:300]}")
            raise CrmError(
                f"CRM {operation} failed with status {response.status_code}",
                status_code=response.status_code,
                operation=operation,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise CrmError(f"CRM {operation} returned invalid JSON", operation=operation) from e
        if not isinstance(body, dict):
            raise CrmError(f"CRM {operation} returned unexpected body", operation=operation)
        return body

    @staticmethod
    def _crm(config: CrmConfig, resource: str) -> str:
        return f"crm/v2/tenant/{config.crm_tenant_id}/{resource}"

    async def _locations_for_customers(
        self, config: CrmConfig, customers: list[CrmCustomer], page_size: int
    ) -> list[CrmLocation]:
        locations: list[CrmLocation] = []
        for customer in customers[:PHONE_SEARCH_LOCATION_CUSTOMERS]:
            data = await self._request(
                config, "GET", self._crm(config, "locations"), "location_lookup",
                params={"customerId": customer.id, "pageSize": page_size},
            )
            locations.extend(_location_from(item) for item in data.get("data") or [])
        return locations

    # ---- searches ----

    async def search_by_phone(self, tenant_id: int, phone: str) -> CustomerSearch:
        """Customers whose phone matches (normalized to 10 digits), with their locations."""
        config = self._get_config(tenant_id)
        normalized = normalize_phone(phone)
        data = await self._request(
            config, "GET", self._crm(config, "customers"), "search_by_phone",
            params={"phone": normalized, "pageSize": 10},
        )
        customers = [_customer_from(item) for item in data.get("data") or []]
        logger.info(f"CRM phone search found {len(customers)} customers for tenant {tenant_id}")
        if not customers:
            return CustomerSearch()
        locations = await self._locations_for_customers(config, customers, page_size=10)
        return CustomerSearch(customers=customers, locations=locations)

    async def search_by_address(self, tenant_id: int, address: str) -> CustomerSearch:
        """Locations matching street/city/zip, with the customers that own them."""
        config = self._get_config(tenant_id)
        query = parse_address_for_search(address)
        if not query.get("street"):
            return CustomerSearch()
        data = await self._request(
            config, "GET", self._crm(config, "locations"), "search_by_address",
            params={**query, "pageSize": 20},
        )
        locations = [_location_from(item) for item in data.get("data") or []]
        if not locations:
            return CustomerSearch()

        customers: list[CrmCustomer] = []
        customer_ids = list(dict.fromkeys(loc.customer_id for loc in locations))
        for customer_id in customer_ids[:ADDRESS_SEARCH_CUSTOMERS]:
            customer_data = await self._request(
                config, "GET", self._crm(config, f"customers/{customer_id}"), "customer_lookup",
            )
            customers.append(_customer_from(customer_data))
        return CustomerSearch(customers=customers, locations=locations)

    async def search_by_name(self, tenant_id: int, name: str) -> CustomerSearch:
        config = self._get_config(tenant_id)
        data = await self._request(
            config, "GET", self._crm(config, "customers"), "search_by_name",
            params={"name": name, "pageSize": 10},
        )
        customers = [_customer_from(item) for item in data.get("data") or []]
        if not customers:
            return CustomerSearch()
        locations = await self._locations_for_customers(config, customers, page_size=5)
        return CustomerSearch(customers=customers, locations=locations)

    async def get_customer_locations(self, tenant_id: int, customer_id: str) -> list[CrmLocation]:
        config = self._get_config(tenant_id)
        data = await self._request(
            config, "GET", self._crm(config, "locations"), "location_lookup",
            params={"customerId": customer_id, "pageSize": 10},
        )
        return [_location_from(item) for item in data.get("data") or []]

    # ---- writes ----

    async def create_location(
        self,
        tenant_id: int,
        customer_id: str,
        name: str,
        phone: str,
        address: AddressParts,
        email: str | None = None,
    ) -> str:
        """Create a service location for an existing customer. Returns the location id."""
        config = self._get_config(tenant_id)
        contact: dict[str, Any] = {"name": name, "type": "Primary", "phoneNumber": phone}
        if email:
            contact["email"] = email
        payload = {
            "customerId": _as_id(customer_id),
            "name": f"{name} - {address.street}",
            "address": {**address.as_dict(), "country": "USA"},
            "contacts": [contact],
        }
        data = await self._request(config, "POST", self._crm(config, "locations"), "create_location", json=payload)
        if "id" not in data:
            raise CrmError("CRM create_location response has no id", operation="create_location")
        return str(data["id"])

    async def create_customer(
        self,
        tenant_id: int,
        name: str,
        phone: str,
        address: AddressParts,
        email: str | None = None,
    ) -> NewCustomer:
        """Create a residential customer and its first service location."""
        config = self._get_config(tenant_id)
        payload: dict[str, Any] = {
            "name": name,
            "type": "Residential",
            "address": {**address.as_dict(), "country": "USA"},
            "phoneSettings": [{"phoneNumber": phone, "type": "Mobile"}],
        }
        if email:
            payload["email"] = email
        data = await self._request(config, "POST", self._crm(config, "customers"), "create_customer", json=payload)
        if "id" not in data:
            raise CrmError("CRM create_customer response has no id", operation="create_customer")
        customer_id = str(data["id"])
        logger.info(f"CRM customer {customer_id} created for tenant {tenant_id}")

        location_id = await self.create_location(tenant_id, customer_id, name, phone, address, email=email)
        return NewCustomer(customer_id=customer_id, location_id=location_id)

    async def get_availability(
        self,
        tenant_id: int,
        business_unit_id: str | None = None,
        max_slots: int = 3,
        days_ahead: int = 7,
        today: date | None = None,
    ) -> list[AvailabilitySlot]:
        """
        Days with remaining capacity in the next `days_ahead` days, one window each.

        Returns:
            Up to max_slots slots, earliest first (empty when nothing is available)
        """
        config = self._get_config(tenant_id)
        today = today or date.today()
        params: dict[str, Any] = {
            "startsOnOrAfter": (today + timedelta(days=1)).isoformat(),
            "endsOnOrBefore": (today + timedelta(days=days_ahead)).isoformat(),
        }
        if business_unit_id:
            params["businessUnitId"] = business_unit_id
        data = await self._request(
            config, "GET", f"dispatch/v2/tenant/{config.crm_tenant_id}/capacity", "get_availability",
            params=params,
        )

        available_days: list[date] = []
        for item in data.get("data") or []:
            try:
                if float(item.get("availability") or 0) > 0:
                    available_days.append(date.fromisoformat(str(item["date"])[:10]))
            except (KeyError, ValueError, TypeError) as e:
                raise CrmError(f"Malformed capacity entry: {e}", operation="get_availability") from e

        slots: list[AvailabilitySlot] = []
        for day in sorted(set(available_days))[:max_slots]:
            start, end, label = TIME_WINDOWS[len(slots) % len(TIME_WINDOWS)]
            day_name = day.strftime("%A")
            slots.append(
                AvailabilitySlot(
                    date=day.isoformat(),
                    day_of_week=day_name,
                    start_time=start,
                    end_time=end,
                    arrival_window=label,
                    display_text=f"{day_name} {day.strftime('%b')} {day.day}, {label}",
                )
            )
        logger.info(f"CRM availability: {len(slots)} slots for tenant {tenant_id}")
        return slots

    async def create_job(
        self,
        tenant_id: int,
        customer_id: str,
        location_id: str,
        job_type_id: str,
        business_unit_id: str,
        summary: str,
        slot: AvailabilitySlot,
        campaign_id: str | None = None,
    ) -> JobRecord:
        """Create a job with one appointment spanning the chosen slot's arrival window."""
        config = self._get_config(tenant_id)
        start = f"{slot.date}T{slot.start_time}:00"
        end = f"{slot.date}T{slot.end_time}:00"
        payload: dict[str, Any] = {
            "customerId": _as_id(customer_id),
            "locationId": _as_id(location_id),
            "jobTypeId": _as_id(job_type_id),
            "businessUnitId": _as_id(business_unit_id),
            "priority": "Normal",
            "summary": summary,
            "appointments": [
                {"start": start, "end": end, "arrivalWindowStart": start, "arrivalWindowEnd": end}
            ],
        }
        if campaign_id:
            payload["campaignId"] = _as_id(campaign_id)
        data = await self._request(
            config, "POST", f"jpm/v2/tenant/{config.crm_tenant_id}/jobs", "create_job", json=payload,
        )
        if "id" not in data:
            raise CrmError("CRM create_job response has no id", operation="create_job")

        appointment_id = data.get("firstAppointmentId")
        if appointment_id is None and data.get("appointments"):
            appointment_id = data["appointments"][0].get("id")
        return JobRecord(
            job_id=str(data["id"]),
            appointment_id=str(appointment_id) if appointment_id is not None else None,
        )

    async def create_handoff_record(self, request: HandoffRequest) -> str | None:
        """
        Create a CRM booking for staff follow-up.

        Returns:
            Booking id, if the CRM returned one
        """
        config = self._get_config(request.tenant_id)
        notes = "\n".join([
            "SMS Booking Agent Handoff",
            f"Tenant: {request.tenant_name}",
            f"Conversation ID: {request.conversation_id}",
            "",
            f"Last Message: {request.last_inbound_message}",
            "",
            request.summary,
        ])
        contacts = [{"type": "MobilePhone", "value": request.contact_phone}]
        if request.contact_email:
            contacts.append({"type": "Email", "value": request.contact_email})
        last = request.last_inbound_message
        payload = {
            "source": config.booking_provider,
            "name": request.contact_name or "Unknown",
            "contacts": contacts,
            "summary": f"SMS Reply - {last[:100]}{'...' if len(last) > 100 else ''}",
            "notes": notes,
        }
        data = await self._request(
            config, "POST", f"booking/v2/tenant/{config.crm_tenant_id}/bookings", "create_booking", json=payload,
        )
        booking_id = data.get("id") or data.get("bookingId")
        return str(booking_id) if booking_id is not None else None
