"""
Tests for state machine service.
"""

import pytest
from sqlalchemy import select

from app.constants.event_types import EVENT_SESSION_TRANSITION
from app.constants.statuses import SessionOutcome, SessionState
from app.db.models import SystemEvent
from app.services import session_manager
from app.services.state_machine import (
    ALLOWED_TRANSITIONS,
    InvalidTransition,
    SessionInvariantError,
    get_allowed_transitions,
    is_terminal_state,
    is_transition_allowed,
    transition,
)


def _session(db, seeded):
    return session_manager.load_or_create(
        db, seeded["conversation"].id, seeded["tenant"].id, seeded["contact"].id
    )


def _transition_events(db, session_id):
    stmt = (
        select(SystemEvent)
        .where(SystemEvent.session_id == session_id)
        .where(SystemEvent.event_type == EVENT_SESSION_TRANSITION)
        .order_by(SystemEvent.id)
    )
    return db.execute(stmt).scalars().all()


def test_is_transition_allowed_valid():
    """Test valid transitions."""
    assert is_transition_allowed(SessionState.INBOUND_RECEIVED, SessionState.QUALIFYING) is True
    assert is_transition_allowed(SessionState.QUALIFYING, SessionState.MATCHING_ST_RECORDS) is True
    assert is_transition_allowed(SessionState.MATCHING_ST_RECORDS, SessionState.PROPOSING_TIMES) is True
    assert is_transition_allowed(SessionState.PROPOSING_TIMES, SessionState.BOOKING_JOB) is True
    assert is_transition_allowed(SessionState.BOOKING_JOB, SessionState.CONFIRMED) is True


def test_is_transition_allowed_invalid():
    """Test invalid transitions."""
    assert is_transition_allowed(SessionState.INBOUND_RECEIVED, SessionState.CONFIRMED) is False
    assert is_transition_allowed(SessionState.QUALIFYING, SessionState.BOOKING_JOB) is False
    assert is_transition_allowed(SessionState.CONFIRMED, SessionState.QUALIFYING) is False
    assert is_transition_allowed(SessionState.BOOKING_JOB, SessionState.COMPLETED) is False


def test_every_non_terminal_state_can_exit():
    """Handoff, completion and error are reachable from every non-terminal state."""
    for state, allowed in ALLOWED_TRANSITIONS.items():
        if is_terminal_state(state):
            assert allowed == []
            continue
        assert SessionState.HANDOFF_TO_CSR in allowed
        assert SessionState.ERROR in allowed


def test_get_allowed_transitions():
    """Test getting allowed transitions."""
    transitions = get_allowed_transitions(SessionState.MATCHING_ST_RECORDS)
    assert SessionState.AWAITING_IDENTITY_CONFIRM in transitions
    assert SessionState.CREATING_ST_CUSTOMER in transitions

    assert get_allowed_transitions(SessionState.COMPLETED) == []


def test_transition_valid_emits_one_event(db, seeded):
    """Test valid transition is committed and logged once."""
    session = _session(db, seeded)

    session = transition(db, session, SessionState.QUALIFYING, reason="booking intent")

    db.expire_all()
    assert session.state == SessionState.QUALIFYING
    events = _transition_events(db, session.id)
    assert len(events) == 1
    assert events[0].payload["from"] == SessionState.INBOUND_RECEIVED
    assert events[0].payload["to"] == SessionState.QUALIFYING
    assert events[0].payload["reason"] == "booking intent"


def test_transition_to_same_state_is_noop(db, seeded):
    """Test re-entering the current state emits nothing."""
    session = _session(db, seeded)

    transition(db, session, SessionState.INBOUND_RECEIVED)

    assert _transition_events(db, session.id) == []


def test_transition_invalid_raises_error(db, seeded):
    """Test that invalid transition raises InvalidTransition and leaves the row alone."""
    session = _session(db, seeded)

    with pytest.raises(InvalidTransition, match="Invalid state transition"):
        transition(db, session, SessionState.BOOKING_JOB)

    db.refresh(session)
    assert session.state == SessionState.INBOUND_RECEIVED
    assert _transition_events(db, session.id) == []


def test_terminal_state_requires_matching_outcome(db, seeded):
    """Test terminal states only accept their own outcomes."""
    session = _session(db, seeded)

    with pytest.raises(InvalidTransition):
        transition(db, session, SessionState.COMPLETED)
    with pytest.raises(InvalidTransition):
        transition(db, session, SessionState.COMPLETED, outcome=SessionOutcome.FULL_BOOKING)

    session = transition(db, session, SessionState.COMPLETED, outcome=SessionOutcome.OPT_OUT)
    assert session.outcome == SessionOutcome.OPT_OUT


def test_non_terminal_state_rejects_final_outcome(db, seeded):
    session = _session(db, seeded)

    with pytest.raises(InvalidTransition):
        transition(db, session, SessionState.QUALIFYING, outcome=SessionOutcome.NEEDS_HUMAN)


def test_terminal_state_has_no_exit(db, seeded):
    """Test a terminal session cannot be moved by automation."""
    session = _session(db, seeded)
    session = transition(db, session, SessionState.ERROR, reason="boom", outcome=SessionOutcome.NEEDS_HUMAN)

    with pytest.raises(InvalidTransition):
        transition(db, session, SessionState.QUALIFYING)
    assert session.handoff_reason == "boom"


def test_proposing_times_requires_customer_location_and_slots(db, seeded):
    """Test field requirements are checked before the state changes."""
    session = _session(db, seeded)
    session = transition(db, session, SessionState.QUALIFYING)
    session = transition(db, session, SessionState.MATCHING_ST_RECORDS)

    with pytest.raises(SessionInvariantError, match="crm_customer_id"):
        transition(db, session, SessionState.PROPOSING_TIMES)

    db.rollback()
    db.refresh(session)
    assert session.state == SessionState.MATCHING_ST_RECORDS


def test_awaiting_confirm_requires_pending_match(db, seeded):
    session = _session(db, seeded)
    session = transition(db, session, SessionState.QUALIFYING)
    session = transition(db, session, SessionState.MATCHING_ST_RECORDS)

    with pytest.raises(SessionInvariantError, match="pending_match_customer_id"):
        transition(db, session, SessionState.AWAITING_IDENTITY_CONFIRM)

    db.rollback()
    session_manager.update(db, session, pending_match_customer_id="C-1", pending_match_name="Jane Doe")
    session = transition(db, session, SessionState.AWAITING_IDENTITY_CONFIRM)
    assert session.state == SessionState.AWAITING_IDENTITY_CONFIRM


def test_error_transition_logged_as_warn(db, seeded):
    session = _session(db, seeded)

    transition(db, session, SessionState.ERROR, reason="crash", outcome=SessionOutcome.NEEDS_HUMAN)

    events = _transition_events(db, session.id)
    assert events[-1].level == "WARN"
