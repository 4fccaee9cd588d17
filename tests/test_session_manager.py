"""
Tests for session state manager: lazy creation, partial updates, loop-guard counting and reset.
"""

import pytest
from sqlalchemy import select

from app.constants.event_types import EVENT_SESSION_BACKING_DATA_MISSING, EVENT_SESSION_CREATED, EVENT_SESSION_RESET
from app.constants.statuses import SessionOutcome, SessionState
from app.db.models import AgentSession, SystemEvent
from app.services import session_manager
from app.services.session_manager import SessionBackingDataMissing
from app.services.state_machine import transition


def _load(db, seeded):
    return session_manager.load_or_create(
        db,
        seeded["conversation"].id,
        seeded["tenant"].id,
        seeded["contact"].id,
        offer_context_id=seeded["offer"].id,
    )


def _events(db, event_type):
    return db.execute(select(SystemEvent).where(SystemEvent.event_type == event_type)).scalars().all()


def test_load_or_create_creates_initial_session(db, seeded):
    """A new session starts in INBOUND_RECEIVED/PENDING with the contact's name."""
    session = _load(db, seeded)

    assert session.id is not None
    assert session.state == SessionState.INBOUND_RECEIVED
    assert session.outcome == SessionOutcome.PENDING
    assert session.message_count == 0
    assert session.confirmed_name == "Jane Doe"
    assert session.offer_context.offer_name == "$79 AC Tune-Up"
    assert len(_events(db, EVENT_SESSION_CREATED)) == 1


def test_load_or_create_returns_existing_session(db, seeded):
    """One session per conversation."""
    first = _load(db, seeded)
    second = _load(db, seeded)

    assert first.id == second.id
    assert len(db.execute(select(AgentSession)).scalars().all()) == 1
    assert len(_events(db, EVENT_SESSION_CREATED)) == 1


def test_load_or_create_missing_conversation(db, seeded):
    with pytest.raises(SessionBackingDataMissing) as exc_info:
        session_manager.load_or_create(db, 9999, seeded["tenant"].id, seeded["contact"].id)
    assert exc_info.value.missing == "conversation"


def test_load_or_create_missing_contact(db, seeded):
    with pytest.raises(SessionBackingDataMissing) as exc_info:
        session_manager.load_or_create(db, seeded["conversation"].id, seeded["tenant"].id, 9999)
    assert exc_info.value.missing == "contact"


def test_update_rejects_state_changes(db, seeded):
    """State and outcome only change through the state machine."""
    session = _load(db, seeded)

    with pytest.raises(ValueError):
        session_manager.update(db, session, state=SessionState.CONFIRMED)
    with pytest.raises(AttributeError):
        session_manager.update(db, session, not_a_field="x")


def test_update_persists_fields(db, seeded):
    session = _load(db, seeded)

    session_manager.update(db, session, crm_customer_id="C-1", qualification_score=40)

    db.expire_all()
    reloaded = session_manager.get_session_by_conversation(db, seeded["conversation"].id)
    assert reloaded.crm_customer_id == "C-1"
    assert reloaded.qualification_score == 40


def test_merge_extracted_fields_ignores_empty_values(db, seeded):
    """Extraction never overwrites a value with an empty one."""
    session = _load(db, seeded)

    changed = session_manager.merge_extracted_fields(
        db, session, {"address": "  123 Main St, Tempe ", "name": "", "email": None, "preferred_time": "mornings"}
    )

    assert sorted(changed) == ["confirmed_address", "preferred_time_slot"]
    assert session.confirmed_address == "123 Main St, Tempe"
    assert session.confirmed_name == "Jane Doe"
    assert session.preferred_time_slot == "mornings"


def test_merge_extracted_fields_last_write_wins(db, seeded):
    session = _load(db, seeded)
    session_manager.merge_extracted_fields(db, session, {"address": "1 Old Rd, Mesa"})

    changed = session_manager.merge_extracted_fields(db, session, {"address": "9 New Ave, Tempe"})

    assert changed == ["confirmed_address"]
    assert session.confirmed_address == "9 New Ave, Tempe"


def test_record_inbound_counts_each_message(db, seeded):
    session = _load(db, seeded)

    assert session_manager.record_inbound(db, session, "m1") is True
    assert session_manager.record_inbound(db, session, "m2") is True
    assert session_manager.record_inbound(db, session) is True

    assert session.message_count == 3


def test_record_inbound_retry_not_counted(db, seeded):
    """A retry with the same transport message id does not use up the allowance."""
    session = _load(db, seeded)

    session_manager.record_inbound(db, session, "m1")
    assert session_manager.record_inbound(db, session, "m1") is False

    assert session.message_count == 1
    assert session.last_inbound_message_id == "m1"


def test_loop_guard_trips_at_cap(db, seeded):
    config = seeded["config"]
    config.max_messages_per_session = 2
    session = _load(db, seeded)

    session_manager.record_inbound(db, session)
    assert session_manager.is_loop_guard_tripped(session, config) is False

    session_manager.record_inbound(db, session)
    assert session_manager.is_loop_guard_tripped(session, config) is True


def test_reset_session_clears_negotiation_but_keeps_identity(db, seeded):
    """Human reset returns to the initial state; confirmed data and CRM ids survive."""
    session = _load(db, seeded)
    session = transition(db, session, SessionState.QUALIFYING)
    session_manager.update(
        db,
        session,
        message_count=7,
        crm_customer_id="C-1",
        confirmed_address="123 Main St, Tempe",
        pending_match_customer_id="C-2",
        available_slots=[{"date": "2026-10-20"}],
        selected_slot_index=0,
    )
    session = transition(db, session, SessionState.HANDOFF_TO_CSR, reason="stuck", outcome=SessionOutcome.NEEDS_HUMAN)

    session = session_manager.reset_session(db, session, actor="ops@example.com")

    assert session.state == SessionState.INBOUND_RECEIVED
    assert session.outcome == SessionOutcome.PENDING
    assert session.message_count == 0
    assert session.pending_match_customer_id is None
    assert session.available_slots is None
    assert session.selected_slot_index is None
    assert session.handoff_reason is None
    assert session.crm_customer_id == "C-1"
    assert session.confirmed_address == "123 Main St, Tempe"

    events = _events(db, EVENT_SESSION_RESET)
    assert len(events) == 1
    assert events[0].payload["previous"]["state"] == SessionState.HANDOFF_TO_CSR
    assert events[0].payload["actor"] == "ops@example.com"


def test_record_backing_data_missing_finds_orphaned_session(db, seeded):
    session = _load(db, seeded)

    orphan = session_manager.record_backing_data_missing(
        db, SessionBackingDataMissing(seeded["conversation"].id, "contact")
    )

    assert orphan.id == session.id
    events = _events(db, EVENT_SESSION_BACKING_DATA_MISSING)
    assert events[0].level == "WARN"
    assert events[0].session_id == session.id
    assert events[0].payload["missing"] == "contact"
