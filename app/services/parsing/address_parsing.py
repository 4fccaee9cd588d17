"""
Address parsing - splits a free-text service address into CRM fields.

Expected shape is "street, city, ST zip" (e.g. "123 Main St, Tempe, AZ 85281").
Anything shorter keeps the whole text as the street.
"""

import re
from dataclasses import dataclass

from app.services.parsing.text_normalization import normalize_text

DEFAULT_STATE = "AZ"

STREET_SUFFIXES = (
    "st", "street", "ave", "avenue", "rd", "road", "dr", "drive", "ln", "lane",
    "blvd", "boulevard", "ct", "court", "way", "pl", "place", "cir", "circle",
    "pkwy", "parkway", "trl", "trail", "hwy", "highway", "ter", "terrace", "loop",
)

# House number followed by at least one word and a street suffix
STREET_PATTERN = re.compile(
    r"\b\d{1,6}\s+(?:[nsew]\.?\s+)?[a-z0-9][a-z0-9 .'-]*?\b(?:" + "|".join(STREET_SUFFIXES) + r")\b\.?",
    re.IGNORECASE,
)
ZIP_PATTERN = re.compile(r"\b\d{5}(?:-\d{4})?\b")


@dataclass
class AddressParts:
    street: str
    city: str = ""
    state: str = DEFAULT_STATE
    zip: str = ""

    def as_dict(self) -> dict[str, str]:
        return {"street": self.street, "city": self.city, "state": self.state, "zip": self.zip}


def parse_address(address: str | None) -> AddressParts:
    """
    Split an address into street/city/state/zip.

    Args:
        address: Free-text address

    Returns:
        AddressParts (state defaults to AZ, missing parts are empty strings)
    """
    text = normalize_text(address)
    parts = [p.strip() for p in text.split(",") if p.strip()]

    if len(parts) >= 3:
        state_zip = parts[-1].split()
        state = state_zip[0].upper() if state_zip and not state_zip[0].isdigit() else DEFAULT_STATE
        zip_match = ZIP_PATTERN.search(parts[-1])
        return AddressParts(
            street=parts[0],
            city=parts[1],
            state=state,
            zip=zip_match.group(0) if zip_match else "",
        )

    if len(parts) == 2:
        # "123 Main St, Tempe AZ 85281"
        tail = parts[1]
        zip_match = ZIP_PATTERN.search(tail)
        zip_code = zip_match.group(0) if zip_match else ""
        tail = ZIP_PATTERN.sub("", tail).strip()
        state = DEFAULT_STATE
        state_match = re.search(r"\b([A-Za-z]{2})$", tail)
        if state_match and len(tail.split()) > 1:
            state = state_match.group(1).upper()
            tail = tail[: state_match.start()].strip()
        return AddressParts(street=parts[0], city=tail, state=state, zip=zip_code)

    return AddressParts(street=text)


def parse_address_for_search(address: str | None) -> dict[str, str]:
    """Street/city/zip filters for a CRM location search (empty values dropped)."""
    parts = parse_address(address)
    query = {"street": parts.street, "city": parts.city, "zip": parts.zip}
    return {k: v for k, v in query.items() if v}


def extract_street_address(text: str | None) -> str | None:
    """Pull the first street-address-looking span out of a longer message."""
    s = normalize_text(text)
    match = STREET_PATTERN.search(s)
    if not match:
        return None
    # Keep any ", city, ST zip" tail that follows the street
    tail_match = re.match(
        r"(?:\s*,\s*[A-Za-z][A-Za-z .'-]*[A-Za-z])?(?:\s*,\s*[A-Za-z]{2}\b|\s+[A-Z]{2}(?=\s+\d{5}))?(?:\s+\d{5}(?:-\d{4})?)?",
        s[match.end():],
    )
    tail = tail_match.group(0) if tail_match else ""
    return (match.group(0) + tail).strip().rstrip(",.")


def looks_like_address(text: str | None) -> bool:
    """True if the reply contains a house number and street, or a number plus a zip code."""
    s = normalize_text(text)
    if not s:
        return False
    if STREET_PATTERN.search(s):
        return True
    return bool(re.match(r"^\d{1,6}\s+\S+", s) and ZIP_PATTERN.search(s))


def normalize_street(street: str | None) -> str:
    """Lowercase street with punctuation and repeated spaces removed, for location matching."""
    s = normalize_text(street).lower()
    s = re.sub(r"[^a-z0-9 ]", "", s)
    return re.sub(r"\s+", " ", s).strip()
