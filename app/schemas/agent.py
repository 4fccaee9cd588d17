"""
Agent API request/response schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InboundMessageRequest(BaseModel):
    """Inbound SMS handed over by the transport layer."""

    conversation_id: int
    tenant_id: int
    contact_id: int
    message_body: str
    # Transport message id; a retry with the same id is not counted twice
    message_id: str | None = None
    # Campaign offer the conversation started from; attached when the session is created
    offer_context_id: int | None = None


class InboundMessageResponse(BaseModel):
    """Response directive. `automation_enabled=False` means the agent did not act."""

    automation_enabled: bool = True
    should_respond: bool = False
    response_text: str | None = None
    new_state: str | None = None
    outcome: str | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)


class SessionResponse(BaseModel):
    """Response schema for a single agent session."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    conversation_id: int
    tenant_id: int
    contact_id: int
    state: str
    outcome: str
    message_count: int
    qualification_score: int
    booking_intent: str | None = None
    confirmed_name: str | None = None
    confirmed_address: str | None = None
    confirmed_email: str | None = None
    preferred_time_slot: str | None = None
    crm_customer_id: str | None = None
    crm_location_id: str | None = None
    crm_job_id: str | None = None
    crm_appointment_id: str | None = None
    crm_booking_id: str | None = None
    pending_match_customer_id: str | None = None
    pending_match_by: str | None = None
    rejected_customer_ids: list[str] | None = None
    available_slots: list[dict[str, Any]] | None = None
    selected_slot_index: int | None = None
    last_intent: str | None = None
    last_intent_confidence: float | None = None
    handoff_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TransitionEntry(BaseModel):
    from_state: str
    to_state: str


class SessionDetailResponse(BaseModel):
    """Session plus its transition history."""

    session: SessionResponse
    transitions: list[TransitionEntry]


class HandoffRequestBody(BaseModel):
    """Request schema for a manual handoff."""

    reason: str | None = None


class HandoffResponse(BaseModel):
    session: SessionResponse
    booking_id: str | None = None
    record_created: bool = False
    error: str | None = None


class AgentConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: int
    enabled: bool
    auto_respond: bool
    max_messages_per_session: int
    qualification_threshold: int
    default_business_unit_id: str | None = None
    default_job_type_id: str | None = None
    default_campaign_id: str | None = None
    availability_days_ahead: int
    max_slots_offered: int


class AgentConfigUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    enabled: bool | None = None
    auto_respond: bool | None = None
    max_messages_per_session: int | None = Field(default=None, ge=1)
    qualification_threshold: int | None = Field(default=None, ge=0, le=100)
    default_business_unit_id: str | None = None
    default_job_type_id: str | None = None
    default_campaign_id: str | None = None
    availability_days_ahead: int | None = Field(default=None, ge=1, le=30)
    max_slots_offered: int | None = Field(default=None, ge=1, le=3)
