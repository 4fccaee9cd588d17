"""
Intent classification contract shared by the heuristic and OpenAI classifiers.

A classifier maps one customer SMS (plus recent history and the active offer)
to a single coded Intent and any data the customer volunteered.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.constants.statuses import Intent
from app.core.config import Settings

logger = logging.getLogger(__name__)

SOURCE_KEYWORD = "keyword"
SOURCE_HEURISTIC = "heuristic"
SOURCE_LLM = "llm"

# Keys a classifier may put in extracted_data
EXTRACTED_KEYS = ("address", "name", "email", "preferred_time", "question")


@dataclass
class Classification:
    intent: Intent
    confidence: float
    reasoning: str
    extracted_data: dict[str, str] = field(default_factory=dict)
    source: str = SOURCE_HEURISTIC

    def as_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "extracted_data": self.extracted_data,
            "source": self.source,
        }


class IntentClassifier(Protocol):
    async def classify(
        self,
        message: str,
        history: list[dict[str, str]],
        offer_context: Any | None = None,
    ) -> Classification: ...


def clean_extracted(data: dict | None) -> dict[str, str]:
    """Keep known keys with non-empty string values."""
    if not isinstance(data, dict):
        return {}
    cleaned = {}
    for key in EXTRACTED_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value.strip() and value.strip().lower() not in ("null", "none"):
            cleaned[key] = value.strip()
    return cleaned


def build_intent_classifier(settings: Settings) -> IntentClassifier:
    """
    Pick the classifier implementation for this process.

    OpenAI is used only when configured with an API key; otherwise (or with
    AI_PROVIDER=heuristic) the deterministic keyword classifier is used.
    """
    from app.services.intent.heuristic_classifier import HeuristicIntentClassifier

    if settings.ai_provider == "openai" and settings.openai_api_key:
        from app.services.intent.openai_classifier import OpenAIIntentClassifier

        return OpenAIIntentClassifier(api_key=settings.openai_api_key, model=settings.openai_model)

    if settings.ai_provider == "openai":
        logger.warning("AI_PROVIDER=openai but OPENAI_API_KEY is not set - using heuristic classifier")
    return HeuristicIntentClassifier()
