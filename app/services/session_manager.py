"""
Session state manager - owns the persistent per-conversation AgentSession row.

Policy:
- One session per conversation, created lazily on the first automated inbound message
- The row is re-read (SELECT FOR UPDATE) for every inbound message, never reused across messages
- Field updates never overwrite a value with an empty one
- Only an explicit human reset returns a session to its initial state
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_SESSION_BACKING_DATA_MISSING,
    EVENT_SESSION_CREATED,
    EVENT_SESSION_RESET,
)
from app.constants.statuses import SessionOutcome, SessionState
from app.db.helpers import commit_and_refresh
from app.db.models import AgentConfig, AgentSession, Contact, Conversation
from app.services.system_event_service import info, warn

logger = logging.getLogger(__name__)

# Fields merged from classifier extraction; "last write wins" but never with an empty value
EXTRACTED_FIELD_MAP = {
    "address": "confirmed_address",
    "name": "confirmed_name",
    "email": "confirmed_email",
    "preferred_time": "preferred_time_slot",
}

# Negotiation fields cleared when a human resets the session
_EPHEMERAL_FIELDS = (
    "pending_match_customer_id",
    "pending_match_location_id",
    "pending_match_name",
    "pending_match_address",
    "pending_match_by",
    "available_slots",
    "selected_slot_index",
    "handoff_reason",
)


class SessionBackingDataMissing(Exception):
    """The conversation or contact behind a session no longer exists."""

    def __init__(self, conversation_id: int, missing: str):
        self.conversation_id = conversation_id
        self.missing = missing
        super().__init__(f"{missing} missing for conversation {conversation_id}")


def get_session_by_conversation(
    db: Session, conversation_id: int, lock_row: bool = False
) -> AgentSession | None:
    stmt = select(AgentSession).where(AgentSession.conversation_id == conversation_id)
    if lock_row:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def load_or_create(
    db: Session,
    conversation_id: int,
    tenant_id: int,
    contact_id: int,
    offer_context_id: int | None = None,
) -> AgentSession:
    """
    Load the session for a conversation (locking the row) or create it.

    A new session starts in INBOUND_RECEIVED with the contact's name pre-filled.

    Raises:
        SessionBackingDataMissing: If the conversation or contact does not exist
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise SessionBackingDataMissing(conversation_id, "conversation")
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise SessionBackingDataMissing(conversation_id, "contact")

    session = get_session_by_conversation(db, conversation_id, lock_row=True)
    if session is not None:
        # Always work from the committed row, not a stale identity-map copy
        db.refresh(session)
        return session

    session = AgentSession(
        conversation_id=conversation_id,
        tenant_id=tenant_id,
        contact_id=contact_id,
        offer_context_id=offer_context_id,
        state=SessionState.INBOUND_RECEIVED.value,
        outcome=SessionOutcome.PENDING.value,
        message_count=0,
        confirmed_name=contact.full_name or None,
    )
    db.add(session)
    commit_and_refresh(db, session)
    info(db, EVENT_SESSION_CREATED, session_id=session.id, payload={"conversation_id": conversation_id})
    return session


def update(db: Session, session: AgentSession, **fields: Any) -> AgentSession:
    """
    Apply a partial update and commit it.

    `state` and `outcome` are not accepted here; use state_machine.transition.
    """
    if "state" in fields or "outcome" in fields:
        raise ValueError("state/outcome changes must go through state_machine.transition")
    for key, value in fields.items():
        if not hasattr(AgentSession, key):
            raise AttributeError(f"AgentSession has no field '{key}'")
        setattr(session, key, value)
    commit_and_refresh(db, session)
    return session


def merge_extracted_fields(db: Session, session: AgentSession, extracted: dict) -> list[str]:
    """
    Merge classifier-extracted data into the session (empty values are ignored).

    Returns:
        Names of the session fields that changed
    """
    changes: dict[str, str] = {}
    for key, field in EXTRACTED_FIELD_MAP.items():
        value = extracted.get(key)
        if isinstance(value, str):
            value = value.strip()
        if not value:
            continue
        if getattr(session, field) != value:
            changes[field] = value
    if changes:
        update(db, session, **changes)
    return list(changes)


def record_inbound(db: Session, session: AgentSession, message_id: str | None = None) -> bool:
    """
    Count an inbound message against the loop guard.

    A retry carrying the same transport message id is not counted twice.

    Returns:
        True if the counter was incremented
    """
    if message_id is not None and session.last_inbound_message_id == message_id:
        logger.info(f"Session {session.id}: message {message_id} already counted (retry)")
        return False
    session.message_count = (session.message_count or 0) + 1
    if message_id is not None:
        session.last_inbound_message_id = message_id
    commit_and_refresh(db, session)
    return True


def is_loop_guard_tripped(session: AgentSession, config: AgentConfig) -> bool:
    """True once the session has used up its message allowance."""
    cap = config.max_messages_per_session
    if cap is None or cap <= 0:
        return False
    return session.message_count >= cap


def reset_session(db: Session, session: AgentSession, actor: str | None = None) -> AgentSession:
    """
    Human reset: back to INBOUND_RECEIVED/PENDING with counters and negotiation cleared.

    Confirmed fields, CRM linkage and history are kept.
    """
    previous = {"state": session.state, "outcome": session.outcome, "message_count": session.message_count}
    session.state = SessionState.INBOUND_RECEIVED.value
    session.outcome = SessionOutcome.PENDING.value
    session.message_count = 0
    session.qualification_score = 0
    for field in _EPHEMERAL_FIELDS:
        setattr(session, field, None)
    commit_and_refresh(db, session)
    info(db, EVENT_SESSION_RESET, session_id=session.id, payload={"previous": previous, "actor": actor})
    logger.info(f"Session {session.id} reset by {actor or 'staff'}")
    return session


def record_backing_data_missing(db: Session, exc: SessionBackingDataMissing) -> AgentSession | None:
    """Log the failure and return any orphaned session row for the conversation."""
    session = get_session_by_conversation(db, exc.conversation_id)
    warn(
        db,
        EVENT_SESSION_BACKING_DATA_MISSING,
        session_id=session.id if session else None,
        payload={"conversation_id": exc.conversation_id, "missing": exc.missing},
    )
    return session
