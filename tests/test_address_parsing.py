"""
Tests for address parsing and street extraction.
"""

from app.services.parsing.address_parsing import (
    AddressParts,
    extract_street_address,
    looks_like_address,
    normalize_street,
    parse_address,
    parse_address_for_search,
)


def test_parse_full_address():
    parts = parse_address("123 Main St, Tempe, AZ 85281")
    assert parts == AddressParts(street="123 Main St", city="Tempe", state="AZ", zip="85281")


def test_parse_address_city_state_zip_in_one_part():
    """'street, City ST zip' splits the state and zip off the city."""
    parts = parse_address("123 Main St, Tempe AZ 85281")
    assert parts.street == "123 Main St"
    assert parts.city == "Tempe"
    assert parts.state == "AZ"
    assert parts.zip == "85281"


def test_parse_address_city_only():
    parts = parse_address("1 Elm St, Phoenix")
    assert parts.street == "1 Elm St"
    assert parts.city == "Phoenix"
    assert parts.state == "AZ"
    assert parts.zip == ""


def test_parse_address_street_only_defaults():
    """Short input keeps the whole text as the street."""
    parts = parse_address("456 Oak Ave")
    assert parts.as_dict() == {"street": "456 Oak Ave", "city": "", "state": "AZ", "zip": ""}


def test_parse_address_for_search_drops_empty_fields():
    assert parse_address_for_search("456 Oak Ave") == {"street": "456 Oak Ave"}
    assert parse_address_for_search("123 Main St, Tempe, AZ 85281") == {
        "street": "123 Main St",
        "city": "Tempe",
        "zip": "85281",
    }


def test_extract_street_address_from_sentence():
    text = "sure, it's 123 Main St, Tempe AZ 85281 thanks"
    assert extract_street_address(text) == "123 Main St, Tempe AZ 85281"


def test_extract_street_address_none_without_street():
    assert extract_street_address("call me tomorrow") is None
    assert extract_street_address(None) is None


def test_looks_like_address():
    assert looks_like_address("123 Main St") is True
    assert looks_like_address("4410 N. Scottsdale Rd") is True
    assert looks_like_address("12345") is False
    assert looks_like_address("I have 3 kids") is False
    assert looks_like_address("") is False


def test_normalize_street():
    """Punctuation and case do not affect location matching."""
    assert normalize_street("123 Main St.") == "123 main st"
    assert normalize_street("  123  MAIN   st ") == "123 main st"
    assert normalize_street(None) == ""
