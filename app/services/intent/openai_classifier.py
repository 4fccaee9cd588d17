"""
OpenAI-backed intent classifier.

Stop keywords are answered locally before any model call. Any failure (network,
empty content, invalid JSON) falls back to the heuristic classifier; callers
never see a classification error.
"""

import json
import logging
from typing import Any

from openai import AsyncOpenAI

from app.constants.statuses import Intent
from app.services.intent.classifier import SOURCE_LLM, Classification, clean_extracted
from app.services.intent.heuristic_classifier import HeuristicIntentClassifier
from app.services.parsing.reply_parsing import is_stop_keyword

logger = logging.getLogger(__name__)

HISTORY_LINES = 6

PROMPT_TEMPLATE = """You are an intent classifier for a home services SMS booking system.

CONTEXT:
{offer_text}

CONVERSATION HISTORY:
{history_text}

LATEST CUSTOMER MESSAGE:
"{message}"

Classify the customer's intent into ONE of these categories:
- BOOK_YES: Customer clearly wants to book/schedule (e.g., "yes", "book me", "I'm in", "schedule me")
- INTERESTED: Customer shows interest but isn't fully committing (e.g., "sounds good", "tell me more", "maybe")
- INFO_REQUEST: Customer is asking a question about the service (e.g., "what's included?")
- RESCHEDULE: Customer wants to change an existing appointment
- NOT_NOW: Customer wants to delay (e.g., "not right now", "maybe next month", "busy this week")
- NOT_INTERESTED: Clear rejection (e.g., "no thanks", "not interested", "don't need it")
- OPT_OUT: Wants to stop receiving messages
- WRONG_NUMBER: Claims wrong number or wrong person
- CALL_ME: Customer prefers a real person call them (e.g., "can someone call me")
- CONFIRM_YES: Customer confirming their identity or address (e.g., "yes that's me", "that's my address")
- CONFIRM_NO: Customer denying identity or address (e.g., "no that's not me", "wrong address", "I moved")
- UNCLEAR: Cannot determine intent

Also extract any data the customer provided:
- address (if they mention a street address)
- name (if they mention their name)
- email (if they mention an email)
- preferred_time (if they mention a time preference like "mornings" or "next Tuesday")
- question (if they're asking something)

Respond in JSON format:
{{
  "intent": "INTENT_TYPE",
  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation",
  "extracted_data": {{
    "address": null or "extracted address",
    "name": null or "extracted name",
    "email": null or "extracted email",
    "preferred_time": null or "extracted time",
    "question": null or "extracted question"
  }}
}}"""


def format_history(history: list[dict[str, str]], limit: int = HISTORY_LINES) -> str:
    lines = [
        f"{'Business' if item.get('role') == 'business' else 'Customer'}: {item.get('body', '')}"
        for item in history[-limit:]
    ]
    return "\n".join(lines) if lines else "(no previous messages)"


def format_offer(offer_context: Any | None) -> str:
    if offer_context is None:
        return "No specific offer context"
    name = getattr(offer_context, "offer_name", None) or getattr(offer_context, "offer_type", None) or "offer"
    price = getattr(offer_context, "price", None)
    return f"Current Offer: {name}{f' at {price}' if price else ''}"


class OpenAIIntentClassifier:
    """LLM classifier (JSON mode, low temperature) with heuristic fallback."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        client: AsyncOpenAI | None = None,
        fallback: HeuristicIntentClassifier | None = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.fallback = fallback or HeuristicIntentClassifier()

    async def classify(
        self,
        message: str,
        history: list[dict[str, str]],
        offer_context: Any | None = None,
    ) -> Classification:
        if is_stop_keyword(message):
            return self.fallback.classify_sync(message)

        prompt = PROMPT_TEMPLATE.format(
            offer_text=format_offer(offer_context),
            history_text=format_history(history),
            message=message,
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.1,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content if response.choices else None
            if not content:
                logger.warning("Intent classifier returned empty content - using heuristic fallback")
                return self.fallback.classify_sync(message)
            parsed = json.loads(content)
        except Exception as e:
            logger.warning(f"Intent classification failed, using heuristic fallback: {type(e).__name__}: {e}")
            return self.fallback.classify_sync(message)

        if not isinstance(parsed, dict):
            logger.warning("Intent classifier returned non-object JSON - using heuristic fallback")
            return self.fallback.classify_sync(message)

        return self._to_classification(parsed)

    @staticmethod
    def _to_classification(parsed: dict) -> Classification:
        raw_intent = str(parsed.get("intent") or "").strip().upper()
        try:
            intent = Intent(raw_intent)
        except ValueError:
            logger.info(f"Unknown intent from model: {raw_intent!r} - treating as UNCLEAR")
            intent = Intent.UNCLEAR

        try:
            confidence = float(parsed.get("confidence") or 0.5)
        except (TypeError, ValueError):
            confidence = 0.5
        confidence = min(max(confidence, 0.0), 1.0)

        extracted = parsed.get("extracted_data") or parsed.get("extractedData") or {}
        if isinstance(extracted, dict) and "preferredTime" in extracted:
            extracted = {**extracted, "preferred_time": extracted.get("preferredTime")}

        return Classification(
            intent=intent,
            confidence=confidence,
            reasoning=str(parsed.get("reasoning") or "AI classification"),
            extracted_data=clean_extracted(extracted),
            source=SOURCE_LLM,
        )
