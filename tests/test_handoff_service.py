"""
Tests for the handoff service: transition, one record per session, failure handling.
"""

import pytest
from sqlalchemy import select

from app.constants.event_types import EVENT_HANDOFF_RECORD_CREATED, EVENT_HANDOFF_RECORD_FAILED
from app.constants.statuses import DIRECTION_OUTBOUND, SessionOutcome, SessionState
from app.db.models import SystemEvent
from app.services import session_manager
from app.services.handoff_service import NEEDS_HUMAN_PREFIX, WARM_LEAD_PREFIX, handoff
from app.services.state_machine import transition
from tests.helpers.fakes import FakeCrm, add_message, crm_error


@pytest.fixture
def agent_session(db, seeded):
    session = session_manager.load_or_create(
        db,
        seeded["conversation"].id,
        seeded["tenant"].id,
        seeded["contact"].id,
        offer_context_id=seeded["offer"].id,
    )
    return transition(db, session, SessionState.QUALIFYING)


def _events(db, event_type):
    return db.execute(select(SystemEvent).where(SystemEvent.event_type == event_type)).scalars().all()


@pytest.mark.asyncio
async def test_handoff_transitions_and_creates_record(db, seeded, agent_session):
    add_message(db, seeded["conversation"].id, "Want a $79 tune-up?", DIRECTION_OUTBOUND)
    add_message(db, seeded["conversation"].id, "can someone call me")
    crm = FakeCrm(booking_id="B-77")

    session, record = await handoff(
        db, agent_session, "Customer asked for a call", crm, last_inbound="can someone call me"
    )

    assert session.state == SessionState.HANDOFF_TO_CSR
    assert session.outcome == SessionOutcome.NEEDS_HUMAN
    assert session.handoff_reason == "Customer asked for a call"
    assert record.created is True
    assert record.booking_id == "B-77"
    assert session.crm_booking_id == "B-77"
    assert session.conversation.crm_booking_id == "B-77"
    assert session.conversation.crm_booking_created_at is not None

    request = crm.handoff_requests[0]
    assert request.contact_name == "Jane Doe"
    assert request.contact_phone == "(480) 555-0101"
    assert request.tenant_name == "Valley Plumbing"
    assert request.last_inbound_message == (
        f"{NEEDS_HUMAN_PREFIX} Reason: Customer asked for a call | Customer: can someone call me"
    )
    assert "AGENT: Want a $79 tune-up?" in request.summary
    assert "CUSTOMER: can someone call me" in request.summary
    assert len(_events(db, EVENT_HANDOFF_RECORD_CREATED)) == 1


@pytest.mark.asyncio
async def test_warm_handoff_record(db, seeded, agent_session):
    crm = FakeCrm()

    session, record = await handoff(
        db, agent_session, "Below threshold", crm, outcome=SessionOutcome.CSR_BOOKING, warm=True
    )

    assert session.outcome == SessionOutcome.CSR_BOOKING
    assert crm.handoff_requests[0].last_inbound_message == f"{WARM_LEAD_PREFIX} $79 AC Tune-Up"


@pytest.mark.asyncio
async def test_handoff_is_idempotent(db, seeded, agent_session):
    """A second handoff for the same session never creates a second record."""
    crm = FakeCrm()

    session, first = await handoff(db, agent_session, "first", crm)
    session, second = await handoff(db, session, "second", crm)

    assert first.created is True
    assert second.created is False
    assert second.booking_id == "B-900"
    assert len(crm.handoff_requests) == 1


@pytest.mark.asyncio
async def test_handoff_idempotent_without_booking_id(db, seeded, agent_session):
    """The record event alone marks the record as created."""
    crm = FakeCrm(booking_id=None)

    session, first = await handoff(db, agent_session, "first", crm)
    session, second = await handoff(db, session, "second", crm)

    assert first.created is True
    assert first.booking_id is None
    assert second.created is False
    assert len(crm.handoff_requests) == 1


@pytest.mark.asyncio
async def test_handoff_record_failure_is_logged(db, seeded, agent_session):
    """The session is still handed off when the record cannot be created."""
    crm = FakeCrm(fail={"create_handoff_record": crm_error("create_booking", 502)})

    session, record = await handoff(db, agent_session, "CRM down", crm)

    assert session.state == SessionState.HANDOFF_TO_CSR
    assert record.created is False
    assert "502" in record.error
    events = _events(db, EVENT_HANDOFF_RECORD_FAILED)
    assert len(events) == 1
    assert events[0].level == "WARN"
    assert events[0].payload["error"]["type"] == "CrmError"


@pytest.mark.asyncio
async def test_handoff_keeps_terminal_state(db, seeded, agent_session):
    """An errored session stays in ERROR but still gets a record."""
    session = transition(db, agent_session, SessionState.ERROR, reason="crash", outcome=SessionOutcome.NEEDS_HUMAN)
    crm = FakeCrm()

    session, record = await handoff(db, session, "crash", crm)

    assert session.state == SessionState.ERROR
    assert record.created is True


@pytest.mark.asyncio
async def test_handoff_without_sink(db, seeded, agent_session):
    session, record = await handoff(db, agent_session, "no sink", None)

    assert session.state == SessionState.HANDOFF_TO_CSR
    assert record.created is False
    assert record.booking_id is None


@pytest.mark.asyncio
async def test_handoff_prefers_confirmed_contact_details(db, seeded, agent_session):
    session_manager.update(db, agent_session, confirmed_name="Janet Doe", confirmed_email="janet@example.com")
    crm = FakeCrm()

    await handoff(db, agent_session, "manual", crm)

    request = crm.handoff_requests[0]
    assert request.contact_name == "Janet Doe"
    assert request.contact_email == "janet@example.com"
