"""
Pydantic schemas for API request/response validation.
"""

from app.schemas.agent import (
    AgentConfigResponse,
    AgentConfigUpdate,
    HandoffRequestBody,
    HandoffResponse,
    InboundMessageRequest,
    InboundMessageResponse,
    SessionDetailResponse,
    SessionResponse,
    TransitionEntry,
)

__all__ = [
    "InboundMessageRequest",
    "InboundMessageResponse",
    "SessionResponse",
    "SessionDetailResponse",
    "TransitionEntry",
    "HandoffRequestBody",
    "HandoffResponse",
    "AgentConfigResponse",
    "AgentConfigUpdate",
]
