"""
Deterministic keyword classifier - no network, no model.

Used when no LLM is configured and as the fallback whenever the LLM call fails.
Rules are checked in order and matched on word boundaries so "no" does not
fire inside "know" and "schedule" does not fire inside "reschedule".
"""

import logging
import re
from typing import Any

from app.constants.statuses import Intent
from app.services.intent.classifier import SOURCE_HEURISTIC, SOURCE_KEYWORD, Classification
from app.services.parsing.address_parsing import extract_street_address
from app.services.parsing.reply_parsing import is_stop_keyword
from app.services.parsing.text_normalization import normalize_for_matching, normalize_text

logger = logging.getLogger(__name__)


def _compile(phrases: list[str]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in phrases) + r")\b")


# (intent, confidence, pattern) - first match wins
RULES: list[tuple[Intent, float, re.Pattern]] = [
    (Intent.OPT_OUT, 0.9, _compile(["unsubscribe", "stop texting", "stop messaging", "remove me", "take me off"])),
    (Intent.CALL_ME, 0.8, _compile([
        "call me", "give me a call", "call back", "phone call", "talk to someone",
        "speak to someone", "real person", "talk to a person", "speak with someone",
    ])),
    (Intent.WRONG_NUMBER, 0.8, _compile(["wrong number", "wrong person", "who is this", "don't know you", "dont know you"])),
    (Intent.RESCHEDULE, 0.8, _compile(["reschedule", "change my appointment", "move my appointment", "different day"])),
    (Intent.CONFIRM_NO, 0.8, _compile([
        "that's not me", "thats not me", "not me", "wrong address", "not my address",
        "i moved", "different address", "no that",
    ])),
    (Intent.CONFIRM_YES, 0.8, _compile([
        "that's me", "thats me", "that's correct", "thats correct", "that's right",
        "thats right", "correct address", "yes that", "that's my address",
    ])),
    (Intent.NOT_INTERESTED, 0.7, _compile([
        "not interested", "no thanks", "no thank you", "don't need", "dont need", "not for me",
    ])),
    (Intent.NOT_NOW, 0.6, _compile([
        "not now", "not right now", "later", "next month", "busy", "another time", "maybe later",
    ])),
    (Intent.BOOK_YES, 0.7, _compile([
        "yes", "yeah", "yep", "sure", "ok", "okay", "book", "schedule", "i'm in", "im in",
        "let's do it", "lets do it", "sign me up", "sounds great", "set it up",
    ])),
    (Intent.INTERESTED, 0.6, _compile(["interested", "sounds good", "tell me more", "maybe", "possibly"])),
    (Intent.NOT_INTERESTED, 0.7, _compile(["no", "nope", "nah", "pass"])),
]

QUESTION_WORDS = re.compile(r"^(?:what|how|when|where|why|which|who|does|do|is|are|can|could|will|would)\b")

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
NAME_INTRO_PATTERN = re.compile(r"\bmy name(?: is|'s)\s+([A-Za-z][A-Za-z'-]+(?:\s+[A-Za-z][A-Za-z'-]+)?)", re.IGNORECASE)
TIME_PATTERN = re.compile(
    r"\b(?:(?:next\s+)?(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)s?"
    r"(?:\s+(?:morning|afternoon|evening))?"
    r"|mornings?|afternoons?|evenings?|tomorrow|today|tonight|this week|next week|weekends?"
    r"|(?:after|before|around)\s+\d{1,2}(?::\d{2})?\s*(?:am|pm)?"
    r"|\d{1,2}(?::\d{2})?\s*(?:am|pm))\b",
    re.IGNORECASE,
)
# Filler words that trail a captured name ("my name is John and ...")
NAME_STOPWORDS = {"and", "i", "im", "but", "so", "here"}


def extract_data(message: str) -> dict[str, str]:
    """Regex extraction of email, street address, name, preferred time and question."""
    text = normalize_text(message)
    data: dict[str, str] = {}

    email = EMAIL_PATTERN.search(text)
    if email:
        data["email"] = email.group(0)

    address = extract_street_address(text)
    if address:
        data["address"] = address

    name_match = NAME_INTRO_PATTERN.search(text)
    if name_match:
        words = [w for w in name_match.group(1).split() if w.lower() not in NAME_STOPWORDS]
        if words:
            data["name"] = " ".join(w[:1].upper() + w[1:] for w in words)

    time_match = TIME_PATTERN.search(text)
    if time_match:
        data["preferred_time"] = time_match.group(0)

    if "?" in text:
        data["question"] = text

    return data


class HeuristicIntentClassifier:
    """Keyword/pattern classifier implementing the IntentClassifier contract."""

    def classify_sync(self, message: str) -> Classification:
        if is_stop_keyword(message):
            return Classification(
                intent=Intent.OPT_OUT,
                confidence=1.0,
                reasoning="Customer used explicit opt-out keyword",
                source=SOURCE_KEYWORD,
            )

        lower = normalize_for_matching(message)
        extracted = extract_data(message)

        for intent, confidence, pattern in RULES:
            if pattern.search(lower):
                return Classification(
                    intent=intent,
                    confidence=confidence,
                    reasoning=f"Matched {intent.value.lower()} pattern",
                    extracted_data=extracted,
                    source=SOURCE_HEURISTIC,
                )

        if "?" in message or QUESTION_WORDS.search(lower):
            extracted.setdefault("question", normalize_text(message))
            return Classification(
                intent=Intent.INFO_REQUEST,
                confidence=0.6,
                reasoning="Matched question pattern",
                extracted_data=extracted,
                source=SOURCE_HEURISTIC,
            )

        return Classification(
            intent=Intent.UNCLEAR,
            confidence=0.3,
            reasoning="No pattern matched",
            extracted_data=extracted,
            source=SOURCE_HEURISTIC,
        )

    async def classify(
        self,
        message: str,
        history: list[dict[str, str]],
        offer_context: Any | None = None,
    ) -> Classification:
        return self.classify_sync(message)
