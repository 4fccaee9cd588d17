"""
Text normalization for parsing: strip, collapse spaces, normalize unicode.

Use before matching SMS replies against keywords or patterns: phones insert
non-breaking spaces, zero-width chars and smart quotes ("that’s me").
"""

import re
import unicodedata

NBSP = "\u00A0"
ZWSP = "\u200B"
ZWNBSP = "\uFEFF"

# Smart quotes → ASCII so "that’s" matches "that's"
QUOTE_REPLACEMENTS = {
    "\u2018": "'",
    "\u2019": "'",
    "\u201C": '"',
    "\u201D": '"',
}


def normalize_text(text: str | None) -> str:
    """
    Normalize user input for parsing: strip, collapse spaces, fix common unicode.

    Args:
        text: Raw SMS body (or None)

    Returns:
        Normalized string (empty string if input is None/empty)
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        return ""
    s = text.strip()
    s = s.replace(NBSP, " ")
    s = s.replace(ZWSP, "")
    s = s.replace(ZWNBSP, "")
    for smart, plain in QUOTE_REPLACEMENTS.items():
        s = s.replace(smart, plain)
    s = unicodedata.normalize("NFC", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def normalize_for_matching(text: str | None) -> str:
    """normalize_text, lowercased, with trailing punctuation dropped ("Yes!!" → "yes")."""
    s = normalize_text(text).lower()
    return s.rstrip(".!?, ")
