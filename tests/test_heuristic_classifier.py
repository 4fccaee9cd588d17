"""
Tests for the keyword intent classifier and its regex data extraction.
"""

import pytest

from app.constants.statuses import Intent
from app.core.config import Settings
from app.services.intent import HeuristicIntentClassifier, build_intent_classifier
from app.services.intent.classifier import SOURCE_HEURISTIC, SOURCE_KEYWORD, clean_extracted
from app.services.intent.heuristic_classifier import extract_data


@pytest.fixture
def classifier():
    return HeuristicIntentClassifier()


@pytest.mark.parametrize(
    "message,intent",
    [
        ("please stop texting me", Intent.OPT_OUT),
        ("Can someone call me?", Intent.CALL_ME),
        ("wrong number", Intent.WRONG_NUMBER),
        ("I need to reschedule", Intent.RESCHEDULE),
        ("no that's not me", Intent.CONFIRM_NO),
        ("yes that's me", Intent.CONFIRM_YES),
        ("not interested", Intent.NOT_INTERESTED),
        ("maybe later", Intent.NOT_NOW),
        ("Yes book me", Intent.BOOK_YES),
        ("sounds good", Intent.INTERESTED),
        ("nope", Intent.NOT_INTERESTED),
        ("how much does it cost?", Intent.INFO_REQUEST),
        ("asdf", Intent.UNCLEAR),
    ],
)
def test_classify_sync(classifier, message, intent):
    assert classifier.classify_sync(message).intent == intent


def test_stop_keyword_is_certain(classifier):
    """A bare STOP keyword is classified before any pattern."""
    result = classifier.classify_sync("STOP")
    assert result.intent == Intent.OPT_OUT
    assert result.confidence == 1.0
    assert result.source == SOURCE_KEYWORD


def test_word_boundaries(classifier):
    """'no' inside 'know' is not a rejection."""
    result = classifier.classify_sync("I don't know")
    assert result.intent == Intent.UNCLEAR
    assert result.confidence == 0.3


def test_question_is_extracted(classifier):
    result = classifier.classify_sync("how much does it cost?")
    assert result.extracted_data["question"] == "how much does it cost?"
    assert result.source == SOURCE_HEURISTIC


def test_booking_reply_carries_address(classifier):
    result = classifier.classify_sync("Yes, I'm at 123 Main St")
    assert result.intent == Intent.BOOK_YES
    assert result.extracted_data["address"] == "123 Main St"


@pytest.mark.asyncio
async def test_classify_async_matches_sync(classifier):
    result = await classifier.classify("Yes book me", history=[])
    assert result.intent == Intent.BOOK_YES


def test_extract_data_name():
    assert extract_data("my name is john smith") == {"name": "John Smith"}
    assert extract_data("my name is John and I live here")["name"] == "John"


def test_extract_data_email():
    assert extract_data("email me at jane@example.com") == {"email": "jane@example.com"}


def test_extract_data_preferred_time():
    assert extract_data("next tuesday morning works")["preferred_time"] == "next tuesday morning"


def test_extract_data_address_with_city():
    assert extract_data("I'm at 456 Oak Ave, Mesa")["address"] == "456 Oak Ave, Mesa"


def test_clean_extracted_drops_unknown_and_empty():
    cleaned = clean_extracted(
        {"address": " 1 Elm St ", "name": "null", "email": "", "phone": "4805550101", "question": None}
    )
    assert cleaned == {"address": "1 Elm St"}
    assert clean_extracted(None) == {}


def test_build_intent_classifier_without_key_uses_heuristic():
    config = Settings(ai_provider="openai", openai_api_key=None)
    assert isinstance(build_intent_classifier(config), HeuristicIntentClassifier)

    config = Settings(ai_provider="heuristic", openai_api_key="sk-test")
    assert isinstance(build_intent_classifier(config), HeuristicIntentClassifier)
