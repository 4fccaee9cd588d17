"""
Short-reply parsing for states that expect a specific answer shape:
yes/no confirmations, a name, or an opt-out keyword.
"""

import re

from app.services.parsing.text_normalization import normalize_for_matching, normalize_text

# Whole-message opt-out keywords (carrier standard set)
STOP_KEYWORDS = {"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"}

YES_WORDS = {
    "yes", "y", "yeah", "yea", "yep", "yup", "ya", "sure", "correct", "right",
    "ok", "okay", "affirmative", "confirmed", "confirm",
}
YES_PHRASES = (
    "that's me",
    "thats me",
    "that is me",
    "that's right",
    "thats right",
    "that's correct",
    "thats correct",
    "correct address",
    "that's my address",
    "thats my address",
)

NO_WORDS = {"no", "n", "nope", "nah", "incorrect", "wrong"}
NEGATIONS = {"no", "not", "never", "nope", "cant", "dont", "wont", "isnt", "doesnt"}
NO_PHRASES = (
    "that's not me",
    "thats not me",
    "that is not me",
    "not me",
    "wrong address",
    "not my address",
    "i moved",
    "different address",
    "wrong person",
    "not right",
    "not correct",
)

# Lead-ins people put before their name
NAME_PREFIXES = re.compile(
    r"^(?:hi,?\s+)?(?:my name is|my name's|name is|name's|this is|it's|it is|i'm|im|i am|call me)\s+",
    re.IGNORECASE,
)
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z'.-]*(?:\s+[A-Za-z][A-Za-z'.-]*){0,3}$")
NOT_A_NAME = YES_WORDS | NO_WORDS | {
    "stop", "hi", "hello", "hey", "thanks", "thank", "you", "what", "why", "who", "maybe", "later",
    "not", "now", "interested", "unsubscribe", "reschedule", "please", "busy", "call", "cancel",
    "remove", "number", "thx",
}


def is_stop_keyword(message: str | None) -> bool:
    """True if the whole message is a standard opt-out keyword (case-insensitive)."""
    return normalize_text(message).upper().rstrip(".!") in STOP_KEYWORDS


def parse_yes_no(message: str | None) -> bool | None:
    """
    Interpret a confirmation reply.

    Returns:
        True for yes, False for no, None if the reply is neither
    """
    s = normalize_for_matching(message)
    if not s:
        return None

    # Negative phrases first: "that's not me" contains "that's me"-like fragments
    if any(p in s for p in NO_PHRASES):
        return False
    if any(p in s for p in YES_PHRASES):
        return True

    words = re.findall(r"[a-z']+", s)
    if not words:
        return None
    first = words[0]
    if first in NO_WORDS:
        return False
    # "right now is not good" opens with a yes word but is not a yes
    if first in YES_WORDS and not any(w in NEGATIONS or w.endswith("n't") for w in words[1:]):
        return True
    return None


def extract_name(message: str | None) -> str | None:
    """
    Pull a person's name out of a reply to "what's your name?".

    Accepts "John Smith", "it's john", "my name is Jane Doe". Rejects anything
    that looks like a sentence, a question or a yes/no.

    Returns:
        Title-cased name, or None
    """
    s = normalize_text(message).rstrip(".!")
    if not s or "?" in s or any(ch.isdigit() for ch in s):
        return None
    s = NAME_PREFIXES.sub("", s).strip()
    if not NAME_PATTERN.match(s):
        return None
    words = s.split()
    if any(w.lower() in NOT_A_NAME for w in words):
        return None
    return " ".join(w[:1].upper() + w[1:] for w in words)
