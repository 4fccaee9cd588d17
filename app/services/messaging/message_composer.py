"""
Message composer service - loads copy from YAML and selects variants deterministically.

Uses the session id to select a variant (same session always gets the same
wording for a key, so re-prompts read consistently).
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, cast

import yaml

logger = logging.getLogger(__name__)

# Path to copy files
COPY_DIR = Path(__file__).resolve().parent.parent.parent / "copy"
DEFAULT_LOCALE = "en_US"


class _SafeDict(dict):
    """format_map helper: unknown placeholders render as empty strings."""

    def __missing__(self, key: str) -> str:
        logger.warning(f"Missing template variable {key}")
        return ""


class MessageComposer:
    """Composes messages from YAML copy files with deterministic variant selection."""

    def __init__(self, locale: str = DEFAULT_LOCALE):
        """
        Initialize message composer.

        Args:
            locale: Locale code (e.g., "en_US")
        """
        self.locale = locale
        self.copy_file = COPY_DIR / f"{locale}.yml"
        self._copy_data: dict[str, Any] = {}
        self._load_copy()

    def _load_copy(self) -> None:
        if not self.copy_file.exists():
            logger.warning(f"Copy file not found: {self.copy_file}, using empty copy")
            self._copy_data = {}
            return

        with open(self.copy_file, encoding="utf-8") as f:
            self._copy_data = yaml.safe_load(f) or {}
        logger.info(f"Loaded copy from {self.copy_file}")

    def has_key(self, key: str) -> bool:
        return key in self._copy_data

    def _select_variant(self, key: str, seed: int | None = None) -> str | None:
        """
        Select a variant deterministically based on seed.

        Returns:
            Selected variant text, or None if the key is missing
        """
        if key not in self._copy_data:
            logger.warning(f"Message key not found: {key}")
            return None

        variants = self._copy_data[key]
        if not isinstance(variants, list):
            return str(variants)

        if not variants:
            logger.warning(f"No variants found for key: {key}")
            return None

        if seed is not None:
            hash_value = int(hashlib.md5(f"{key}:{seed}".encode()).hexdigest(), 16)
            variant_index = hash_value % len(variants)
        else:
            variant_index = 0

        return cast(str, variants[variant_index])

    def render(self, key: str, seed: int | None = None, **kwargs: Any) -> str | None:
        """
        Render a message from copy.

        Args:
            key: Message key in YAML
            seed: Value for deterministic variant selection (the session id)
            **kwargs: Template variables to substitute

        Returns:
            Rendered message, or None if the key is not in the copy file

        Example:
            composer.render("ask_address", seed=12, first_name="Dana")
        """
        template = self._select_variant(key, seed)
        if template is None:
            return None
        return template.format_map(_SafeDict(kwargs))


_composer: MessageComposer | None = None


def reset_cache() -> None:
    """Clear the global composer cache (tests that patch COPY_DIR)."""
    global _composer
    _composer = None


def get_composer(locale: str = DEFAULT_LOCALE) -> MessageComposer:
    global _composer
    if _composer is None or _composer.locale != locale:
        _composer = MessageComposer(locale=locale)
    return _composer
