"""
Slot selection parsing - maps a reply to the 1-based position of an offered slot.

Requires explicit intent to avoid false positives (e.g. "I have 3 kids" → slot 3):
- Bare number: message is just "1"-"9" (or "one"/"two"/"three")
- Option format: "option 3", "number two", "slot 1", "#3", "3)", "3."
- Ordinal words: "the first one", "second", "3rd"

Word-based picks are refused in questions and negations ("which one is earliest?",
"no one will be home"). Validated against the number of slots actually offered;
anything else is rejected with a reason so the caller can re-prompt.
"""

import logging
import re

from app.services.parsing.text_normalization import normalize_for_matching

logger = logging.getLogger(__name__)

ORDINAL_WORDS = {
    "first": 1,
    "1st": 1,
    "second": 2,
    "2nd": 2,
    "third": 3,
    "3rd": 3,
}

# Only a pick when the whole reply ("two") or after option/slot/number ("option two")
NUMBER_WORDS = {"one": 1, "two": 2, "three": 3}

NEGATION_WORDS = {
    "no", "not", "none", "neither", "nor", "never", "cant", "can't", "dont", "don't", "wont", "won't",
}

OPTION_PREFIX = r"(?:^|\b)(?:option|slot|choice|number)"


def _has_multiple_slot_numbers(message_lower: str) -> bool:
    """True if message contains 2+ distinct single digits. Used to reject '1 or 2'."""
    numbers = re.findall(r"\b([1-9])\b", message_lower)
    return len(set(numbers)) > 1


def _explicit_number(message_lower: str) -> tuple[int, str] | None:
    """Returns (n, match_type) when the reply explicitly names a digit."""
    if re.fullmatch(r"[1-9]", message_lower):
        return int(message_lower), "number"

    option_match = re.search(OPTION_PREFIX + r"\s*#?([1-9])\b", message_lower)
    if option_match:
        return int(option_match.group(1)), "option"

    hash_match = re.search(r"#([1-9])\b", message_lower)
    if hash_match:
        return int(hash_match.group(1)), "hash"

    lead_match = re.match(r"^([1-9])[\).:]", message_lower)
    if lead_match:
        return int(lead_match.group(1)), "list"

    return None


def _is_question_or_negation(message: str, message_lower: str) -> bool:
    if "?" in message:
        return True
    words = re.findall(r"[a-z']+", message_lower)
    return any(w in NEGATION_WORDS or w.endswith("n't") for w in words)


def _word_choice(message_lower: str) -> tuple[int, str] | None:
    """Number word on its own or after option/slot/number, else a single ordinal word."""
    if message_lower in NUMBER_WORDS:
        return NUMBER_WORDS[message_lower], "number"

    word_match = re.search(OPTION_PREFIX + r"\s+(one|two|three)\b", message_lower)
    if word_match:
        return NUMBER_WORDS[word_match.group(1)], "option"

    words = re.findall(r"[a-z0-9]+", message_lower)
    found = {ORDINAL_WORDS[w] for w in words if w in ORDINAL_WORDS}
    if len(found) == 1:
        return found.pop(), "ordinal"
    return None


def parse_slot_selection(message: str, slot_count: int) -> tuple[int | None, dict]:
    """
    Parse a slot selection (pure, no side effects).

    Args:
        message: Customer reply
        slot_count: Number of slots that were offered

    Returns:
        Tuple of (index, metadata):
        - Success: (1-based int, {"matched_by": "number"|"option"|"hash"|"list"|"ordinal"})
        - Reject: (None, {"reason": "no_slots"|"multiple_numbers"|"out_of_range"|"no_intent"})
    """
    if slot_count <= 0:
        return None, {"reason": "no_slots"}

    message_lower = normalize_for_matching(message)
    if not message_lower:
        return None, {"reason": "no_intent"}

    if _has_multiple_slot_numbers(message_lower):
        return None, {"reason": "multiple_numbers"}

    choice = _explicit_number(message_lower)
    if choice is None and not _is_question_or_negation(message or "", message_lower):
        choice = _word_choice(message_lower)
    if choice is not None:
        n, match_type = choice
        if 1 <= n <= slot_count:
            return n, {"matched_by": match_type}
        return None, {"reason": "out_of_range", "value": n}

    # Multi-digit bare numbers ("10", "42") are numeric attempts, just not valid ones
    if re.fullmatch(r"\d+", message_lower):
        return None, {"reason": "out_of_range", "value": int(message_lower)}

    logger.debug(f"Could not parse slot selection from: {message}")
    return None, {"reason": "no_intent"}


def is_numeric_attempt(meta: dict) -> bool:
    """True when the reply was clearly an attempt to pick a number (re-prompt, don't classify)."""
    return meta.get("reason") in ("out_of_range", "multiple_numbers")
