"""
Identity resolver - matches a contact to a CRM customer in a fixed priority order.

1. Phone: exactly one customer -> auto-acceptable (high). Several -> candidates to confirm.
2. Address (only with a confirmed address): matching locations -> candidates (medium).
3. Name (only with a confirmed name): matching customers -> candidates (low).
4. Nothing -> no match (the caller creates a customer).

The first tier that yields a usable result wins. Only a unique phone match is
ever auto-accepted; customers the contact already declined are skipped.
"""

import logging
from dataclasses import dataclass, field

from app.constants.statuses import MatchConfidence, MatchedBy
from app.db.models import AgentSession, Contact
from app.services.integrations.crm_client import CrmLocation, CustomerSearch, FieldServiceCrmClient
from app.services.parsing.address_parsing import normalize_street, parse_address

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5


@dataclass
class IdentityMatch:
    customer_id: str
    display_name: str
    confidence: MatchConfidence
    matched_by: MatchedBy
    location_id: str | None = None
    address: str = ""


@dataclass
class Resolution:
    matches: list[IdentityMatch] = field(default_factory=list)
    auto_acceptable: bool = False

    def __post_init__(self):
        if self.auto_acceptable and not (
            len(self.matches) == 1 and self.matches[0].matched_by == MatchedBy.PHONE
        ):
            raise ValueError("Only a single phone match can be auto-accepted")

    @property
    def found(self) -> bool:
        return bool(self.matches)

    @property
    def best(self) -> IdentityMatch | None:
        return self.matches[0] if self.matches else None


def pick_location(locations: list[CrmLocation], address: str | None = None) -> CrmLocation | None:
    """
    Choose the service location for an accepted customer.

    With an address, the location whose street matches; without one, the only
    location if there is exactly one.
    """
    if address:
        wanted = normalize_street(parse_address(address).street)
        for location in locations:
            street = normalize_street(location.street)
            if street and wanted and (street == wanted or street.startswith(wanted) or wanted.startswith(street)):
                return location
        return None
    if len(locations) == 1:
        return locations[0]
    return None


def _rejected(session: AgentSession) -> set[str]:
    return set(session.rejected_customer_ids or [])


def _phone_tier(search: CustomerSearch, rejected: set[str]) -> Resolution | None:
    if not search.customers:
        return None
    candidates = [c for c in search.customers if c.id not in rejected]
    if not candidates:
        return None

    if len(search.customers) == 1:
        customer = candidates[0]
        locations = search.locations_for(customer.id)
        location = locations[0] if len(locations) == 1 else None
        match = IdentityMatch(
            customer_id=customer.id,
            display_name=customer.name,
            confidence=MatchConfidence.HIGH,
            matched_by=MatchedBy.PHONE,
            location_id=location.id if location else None,
            address=location.display_address if location else customer.address,
        )
        return Resolution(matches=[match], auto_acceptable=True)

    matches = []
    for customer in candidates[:MAX_CANDIDATES]:
        locations = search.locations_for(customer.id)
        location = locations[0] if len(locations) == 1 else None
        matches.append(
            IdentityMatch(
                customer_id=customer.id,
                display_name=customer.name,
                confidence=MatchConfidence.MEDIUM,
                matched_by=MatchedBy.PHONE,
                location_id=location.id if location else None,
                address=location.display_address if location else customer.address,
            )
        )
    return Resolution(matches=matches, auto_acceptable=False)


def _address_tier(search: CustomerSearch, rejected: set[str]) -> Resolution | None:
    matches = []
    for location in search.locations:
        if location.customer_id in rejected:
            continue
        customer = search.customer(location.customer_id)
        matches.append(
            IdentityMatch(
                customer_id=location.customer_id,
                display_name=customer.name if customer else "Unknown",
                confidence=MatchConfidence.MEDIUM,
                matched_by=MatchedBy.ADDRESS,
                location_id=location.id,
                address=location.display_address,
            )
        )
        if len(matches) >= MAX_CANDIDATES:
            break
    return Resolution(matches=matches) if matches else None


def _name_tier(search: CustomerSearch, rejected: set[str]) -> Resolution | None:
    matches = []
    for customer in search.customers:
        if customer.id in rejected:
            continue
        locations = search.locations_for(customer.id)
        location = locations[0] if locations else None
        matches.append(
            IdentityMatch(
                customer_id=customer.id,
                display_name=customer.name,
                confidence=MatchConfidence.LOW,
                matched_by=MatchedBy.NAME,
                location_id=location.id if location else None,
                address=location.display_address if location else customer.address,
            )
        )
        if len(matches) >= MAX_CANDIDATES:
            break
    return Resolution(matches=matches) if matches else None


async def resolve(crm: FieldServiceCrmClient, session: AgentSession, contact: Contact) -> Resolution:
    """
    Resolve the contact's CRM identity.

    Raises:
        CrmError: If any CRM search fails (the caller hands off)
    """
    rejected = _rejected(session)

    if contact.phone:
        result = _phone_tier(await crm.search_by_phone(session.tenant_id, contact.phone), rejected)
        if result:
            logger.info(
                f"Session {session.id}: phone match ({len(result.matches)} candidates, "
                f"auto={result.auto_acceptable})"
            )
            return result

    if session.confirmed_address:
        result = _address_tier(await crm.search_by_address(session.tenant_id, session.confirmed_address), rejected)
        if result:
            logger.info(f"Session {session.id}: address match ({len(result.matches)} candidates)")
            return result

    if session.confirmed_name:
        result = _name_tier(await crm.search_by_name(session.tenant_id, session.confirmed_name), rejected)
        if result:
            logger.info(f"Session {session.id}: name match ({len(result.matches)} candidates)")
            return result

    return Resolution()
