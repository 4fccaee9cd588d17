# Messaging: YAML copy composer and response generators
# Re-export so "from app.services.messaging import ..." works.

from app.services.messaging.response_generator import (
    OpenAIResponseGenerator,
    ResponseGenerator,
    ResponseInstruction,
    TemplateResponseGenerator,
    build_response_generator,
    format_slots_for_sms,
)

__all__ = [
    "OpenAIResponseGenerator",
    "ResponseGenerator",
    "ResponseInstruction",
    "TemplateResponseGenerator",
    "build_response_generator",
    "format_slots_for_sms",
]
