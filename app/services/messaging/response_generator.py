"""
Response generation - turns an orchestrator instruction into customer-facing SMS text.

Two implementations share one contract:
- TemplateResponseGenerator: YAML copy via the message composer (deterministic)
- OpenAIResponseGenerator: persona prompt + rules, falls back to templates on any error

Output is always bounded to `generated_reply_max_chars`. Replies never mention
automation and never carry unsubscribe boilerplate (the transport adds it).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import AsyncOpenAI

from app.core.config import Settings, settings
from app.db.models import AgentSession, Contact, Tenant
from app.services.messaging.message_composer import get_composer

logger = logging.getLogger(__name__)

FALLBACK_TEXT = "Thanks for your message! We'll be in touch shortly."
HISTORY_LINES = 6


@dataclass
class ResponseInstruction:
    """What the orchestrator wants said: a copy key, an LLM instruction and template variables."""

    key: str
    text: str
    context: dict[str, Any] = field(default_factory=dict)
    # Fixed copy is always rendered from the template, never rewritten by a model
    fixed: bool = False


class ResponseGenerator(Protocol):
    async def generate(
        self,
        tenant: Tenant,
        contact: Contact,
        session: AgentSession,
        instruction: ResponseInstruction,
        history: list[dict[str, str]],
    ) -> str: ...


def bound_text(text: str, max_chars: int) -> str:
    """Trim to max_chars, cutting at the last space when a word would be split."""
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    if " " in cut and not text[max_chars].isspace():
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,;:-")


def format_slots_for_sms(slots: list[dict], max_to_show: int = 3) -> str:
    """
    Numbered slot list for an SMS ("1) Tue Oct 20, 8-10 AM").

    Args:
        slots: Serialized availability slots (dicts with display_text)
        max_to_show: Maximum number of slots listed

    Returns:
        Newline-joined list, numbered from 1
    """
    lines = []
    for i, slot in enumerate(slots[:max_to_show], start=1):
        lines.append(f"{i}) {slot.get('display_text', '')}")
    return "\n".join(lines)


def base_context(tenant: Tenant, contact: Contact, session: AgentSession) -> dict[str, Any]:
    offer = session.offer_context
    return {
        "first_name": (contact.first_name or "").strip() or "there",
        "company": tenant.display_name,
        "offer_name": offer.offer_name if offer else "",
    }


class TemplateResponseGenerator:
    """Renders instruction.key from the YAML copy."""

    def __init__(self, locale: str | None = None, max_chars: int | None = None):
        self.locale = locale or settings.copy_locale
        self.max_chars = max_chars or settings.generated_reply_max_chars

    def render(
        self,
        tenant: Tenant,
        contact: Contact,
        session: AgentSession,
        instruction: ResponseInstruction,
    ) -> str:
        composer = get_composer(self.locale)
        ctx = {**base_context(tenant, contact, session), **instruction.context}
        text = composer.render(instruction.key, seed=session.id, **ctx)
        if not text:
            text = composer.render("error_generic", seed=session.id, **ctx) or FALLBACK_TEXT
        return bound_text(text, self.max_chars)

    async def generate(
        self,
        tenant: Tenant,
        contact: Contact,
        session: AgentSession,
        instruction: ResponseInstruction,
        history: list[dict[str, str]],
    ) -> str:
        return self.render(tenant, contact, session, instruction)


class OpenAIResponseGenerator:
    """Chat-completion generator with persona prompt; template fallback on error or empty output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        client: AsyncOpenAI | None = None,
        fallback: TemplateResponseGenerator | None = None,
        persona_prompt: str | None = None,
        sms_max_length: int | None = None,
        max_chars: int | None = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.fallback = fallback or TemplateResponseGenerator()
        self.persona_prompt = persona_prompt or settings.agent_persona_prompt
        self.sms_max_length = sms_max_length or settings.sms_max_length
        self.max_chars = max_chars or settings.generated_reply_max_chars

    def _system_prompt(self, tenant: Tenant) -> str:
        return (
            f"{self.persona_prompt}\n\n"
            f"You are responding on behalf of {tenant.display_name}.\n\n"
            "RULES:\n"
            f"1. Keep response under {self.sms_max_length} characters (SMS limit)\n"
            "2. Be friendly and professional\n"
            "3. Use the customer's first name if known\n"
            "4. Never mention you're an AI\n"
            '5. Don\'t include "Reply STOP to unsubscribe" - it\'s added automatically\n'
            "6. End with a clear next step or question when appropriate"
        )

    def _user_prompt(
        self,
        contact: Contact,
        session: AgentSession,
        instruction: ResponseInstruction,
        history: list[dict[str, str]],
    ) -> str:
        history_text = "\n".join(
            f"{'Business' if m.get('role') == 'business' else 'Customer'}: {m.get('body', '')}"
            for m in history[-HISTORY_LINES:]
        )
        offer = session.offer_context
        offer_line = ""
        if offer:
            offer_line = f"- Current Offer: {offer.offer_name}{f' at {offer.price}' if offer.price else ''}\n"
        return (
            "CONTEXT:\n"
            f"- Customer Name: {contact.first_name or 'Customer'}\n"
            f"{offer_line}\n"
            "RECENT CONVERSATION:\n"
            f"{history_text}\n\n"
            f"INSTRUCTION: {instruction.text}\n\n"
            "Write ONLY the SMS message text, nothing else:"
        )

    async def generate(
        self,
        tenant: Tenant,
        contact: Contact,
        session: AgentSession,
        instruction: ResponseInstruction,
        history: list[dict[str, str]],
    ) -> str:
        if instruction.fixed:
            return self.fallback.render(tenant, contact, session, instruction)

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self._system_prompt(tenant)},
                    {"role": "user", "content": self._user_prompt(contact, session, instruction, history)},
                ],
                temperature=0.7,
                max_tokens=100,
            )
            text = (response.choices[0].message.content or "").strip() if response.choices else ""
        except Exception as e:
            logger.warning(f"Response generation failed for session {session.id}, using template: {e}")
            return self.fallback.render(tenant, contact, session, instruction)

        if not text:
            logger.warning(f"Empty generated response for session {session.id}, using template")
            return self.fallback.render(tenant, contact, session, instruction)
        return bound_text(text, self.max_chars)


def build_response_generator(config: Settings) -> ResponseGenerator:
    template = TemplateResponseGenerator(locale=config.copy_locale, max_chars=config.generated_reply_max_chars)
    if config.ai_provider == "openai" and config.openai_api_key:
        return OpenAIResponseGenerator(
            api_key=config.openai_api_key,
            model=config.openai_model,
            fallback=template,
            persona_prompt=config.agent_persona_prompt,
            sms_max_length=config.sms_max_length,
            max_chars=config.generated_reply_max_chars,
        )
    return template
