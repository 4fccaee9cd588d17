"""
Handoff service - stops automation and puts the conversation in front of staff.

Policy:
- The session moves to HANDOFF_TO_CSR (unless it is already terminal, e.g. ERROR)
- At most one external record per session: an existing crm_booking_id short-circuits
- Failure to create the record is logged as a WARN event; the caller still replies
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_HANDOFF_RECORD_CREATED, EVENT_HANDOFF_RECORD_FAILED
from app.constants.statuses import SessionOutcome, SessionState
from app.db.helpers import commit_and_refresh
from app.db.models import AgentSession, SystemEvent
from app.services.conversation_summary import build_conversation_summary
from app.services.integrations.crm_client import HandoffRequest
from app.services.state_machine import is_terminal_state, transition
from app.services.system_event_service import info, warn

logger = logging.getLogger(__name__)

WARM_LEAD_PREFIX = "[AI Agent - Warm Lead]"
NEEDS_HUMAN_PREFIX = "[AI Agent - Needs Human]"


class HandoffSink(Protocol):
    async def create_handoff_record(self, request: HandoffRequest) -> str | None: ...


@dataclass
class HandoffRecord:
    booking_id: str | None
    created: bool
    error: str | None = None


def _record_already_created(db: Session, session: AgentSession) -> bool:
    """True if a record was created earlier even though the CRM returned no booking id."""
    stmt = (
        select(SystemEvent.id)
        .where(SystemEvent.session_id == session.id)
        .where(SystemEvent.event_type == EVENT_HANDOFF_RECORD_CREATED)
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def _last_message_line(session: AgentSession, reason: str, warm: bool, last_inbound: str | None) -> str:
    if warm:
        offer = session.offer_context
        return f"{WARM_LEAD_PREFIX} {offer.offer_name if offer else 'Customer interested'}"
    line = f"{NEEDS_HUMAN_PREFIX} Reason: {reason}"
    if last_inbound:
        line += f" | Customer: {last_inbound}"
    return line


async def handoff(
    db: Session,
    session: AgentSession,
    reason: str,
    sink: HandoffSink | None,
    outcome: SessionOutcome = SessionOutcome.NEEDS_HUMAN,
    last_inbound: str | None = None,
    warm: bool = False,
) -> tuple[AgentSession, HandoffRecord]:
    """
    Hand the session to a human.

    Args:
        db: Database session
        session: AgentSession to hand off
        reason: Why automation stopped (stored on the session and the record)
        sink: Where the human-visible record is created (None: transition only)
        outcome: NEEDS_HUMAN, or CSR_BOOKING for a warm lead
        last_inbound: The customer's latest message
        warm: Warm-lead record (qualified customer, staff finish the booking)

    Returns:
        Tuple of (session, HandoffRecord)
    """
    if not is_terminal_state(session.state):
        session = transition(db, session, SessionState.HANDOFF_TO_CSR, reason=reason, outcome=outcome)

    if session.crm_booking_id or _record_already_created(db, session):
        logger.info(f"Session {session.id}: handoff record already exists")
        return session, HandoffRecord(booking_id=session.crm_booking_id, created=False)

    if sink is None:
        logger.info(f"Session {session.id}: no handoff sink configured, transition only")
        return session, HandoffRecord(booking_id=None, created=False)

    contact = session.contact
    request = HandoffRequest(
        tenant_id=session.tenant_id,
        tenant_name=session.tenant.display_name,
        conversation_id=session.conversation_id,
        contact_name=session.confirmed_name or contact.full_name,
        contact_phone=contact.phone,
        contact_email=session.confirmed_email or contact.email,
        last_inbound_message=_last_message_line(session, reason, warm, last_inbound),
        summary=build_conversation_summary(db, session.conversation_id),
    )

    try:
        booking_id = await sink.create_handoff_record(request)
    except Exception as e:
        logger.error(f"Session {session.id}: handoff record creation failed: {type(e).__name__}: {e}")
        warn(db, EVENT_HANDOFF_RECORD_FAILED, session_id=session.id, payload={"reason": reason}, exc=e)
        return session, HandoffRecord(booking_id=None, created=False, error=str(e))

    if booking_id:
        session.crm_booking_id = booking_id
        session.conversation.crm_booking_id = booking_id
        session.conversation.crm_booking_created_at = datetime.now(UTC)
        commit_and_refresh(db, session, session.conversation)
    info(
        db,
        EVENT_HANDOFF_RECORD_CREATED,
        session_id=session.id,
        payload={"booking_id": booking_id, "warm": warm, "reason": reason},
    )
    return session, HandoffRecord(booking_id=booking_id, created=True)
