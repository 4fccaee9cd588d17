from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.constants.statuses import SessionOutcome, SessionState
from app.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    public_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return self.public_name or self.name


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    phone: Mapped[str] = mapped_column(String(32), index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)
    contact_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.id"), index=True)

    # Per-conversation kill switch for automated replies
    ai_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Human-visible booking created in the CRM on handoff
    crm_booking_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    crm_booking_created_at: Mapped[Optional[DateTime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )


class Message(Base):
    """SMS history, written by the transport layer. Read-only for the booking agent."""
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(Integer, ForeignKey("conversations.id"), index=True)
    direction: Mapped[str] = mapped_column(String(16))  # INBOUND, OUTBOUND
    body: Mapped[str] = mapped_column(Text)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")


class OfferContext(Base):
    """Campaign offer metadata attached to a session at creation (read-only for the agent)."""
    __tablename__ = "offer_contexts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)
    offer_type: Mapped[str] = mapped_column(String(50))
    offer_name: Mapped[str] = mapped_column(String(200))
    price: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AgentConfig(Base):
    """Per-tenant booking agent configuration."""
    __tablename__ = "agent_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), unique=True, index=True)

    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_respond: Mapped[bool] = mapped_column(Boolean, default=True)

    # Loop guard cap
    max_messages_per_session: Mapped[int] = mapped_column(Integer, default=50)
    qualification_threshold: Mapped[int] = mapped_column(Integer, default=80)

    default_business_unit_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    default_job_type_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    default_campaign_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    availability_days_ahead: Mapped[int] = mapped_column(Integer, default=7)
    max_slots_offered: Mapped[int] = mapped_column(Integer, default=3)

    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CrmConfig(Base):
    """Per-tenant field-service CRM credentials."""
    __tablename__ = "crm_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), unique=True, index=True)

    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    api_base_url: Mapped[str] = mapped_column(String(255))
    crm_tenant_id: Mapped[str] = mapped_column(String(64))
    client_id: Mapped[str] = mapped_column(String(255))
    client_secret: Mapped[str] = mapped_column(String(255))
    app_key: Mapped[str] = mapped_column(String(255))
    booking_provider: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


class AgentSession(Base):
    """Persistent booking automation state for one conversation."""
    __tablename__ = "agent_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    conversation_id: Mapped[int] = mapped_column(Integer, ForeignKey("conversations.id"), unique=True, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)
    contact_id: Mapped[int] = mapped_column(Integer, ForeignKey("contacts.id"), index=True)
    offer_context_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("offer_contexts.id"), nullable=True)

    state: Mapped[str] = mapped_column(String(32), default=SessionState.INBOUND_RECEIVED.value)
    outcome: Mapped[str] = mapped_column(String(32), default=SessionOutcome.PENDING.value)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    # Transport message id last counted (retries of the same message are not re-counted)
    last_inbound_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    qualification_score: Mapped[int] = mapped_column(Integer, default=0)
    booking_intent: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # BOOK_YES, INTERESTED

    # Extracted / confirmed fields (last write wins)
    confirmed_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    confirmed_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    confirmed_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    preferred_time_slot: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # CRM linkage
    crm_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    crm_location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    crm_job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    crm_appointment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    crm_booking_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Candidate identity awaiting a yes/no
    pending_match_customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pending_match_location_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    pending_match_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    pending_match_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pending_match_by: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # phone, address, name
    rejected_customer_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Slots offered to the customer (serialized AvailabilitySlot dicts, 1-based when shown)
    available_slots: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    selected_slot_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    last_intent: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    last_intent_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    handoff_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    conversation: Mapped["Conversation"] = relationship("Conversation")
    contact: Mapped["Contact"] = relationship("Contact")
    tenant: Mapped["Tenant"] = relationship("Tenant")
    offer_context: Mapped[Optional["OfferContext"]] = relationship("OfferContext")


class SystemEvent(Base):
    """Structured record of state transitions and failures."""
    __tablename__ = "system_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    level: Mapped[str] = mapped_column(String(10))  # INFO, WARN, ERROR
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    session_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("agent_sessions.id"), nullable=True, index=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
