"""
Tests for system events service.
"""

from sqlalchemy import select

from app.constants.statuses import SessionState
from app.db.models import SystemEvent
from app.services import session_manager
from app.services.state_machine import transition
from app.services.system_event_service import error, get_transition_history, info, warn


def test_system_event_info(db):
    """Test logging INFO-level system event."""
    event = info(db=db, event_type="test.info_event", payload={"test_key": "test_value"})

    assert event.id is not None
    assert event.level == "INFO"
    assert event.event_type == "test.info_event"
    assert event.session_id is None
    assert event.payload == {"test_key": "test_value"}
    assert event.created_at is not None

    stored = db.execute(select(SystemEvent).where(SystemEvent.id == event.id)).scalar_one()
    assert stored.event_type == "test.info_event"


def test_system_event_warn_with_exception(db):
    """Test that an exception's type and message are added to the payload."""
    event = warn(db, "test.warn_event", payload={"operation": "search"}, exc=ValueError("bad value"))

    assert event.level == "WARN"
    assert event.payload["operation"] == "search"
    assert event.payload["error"] == {"type": "ValueError", "message": "bad value"}


def test_system_event_error_truncates_message(db):
    event = error(db, "test.error_event", exc=RuntimeError("x" * 2000))

    assert event.level == "ERROR"
    assert len(event.payload["error"]["message"]) == 500


def test_system_event_without_payload(db):
    event = info(db, "test.empty")
    assert event.payload is None


def test_system_event_payload_is_copied(db):
    payload = {"a": 1}
    event = info(db, "test.copy", payload=payload)
    payload["a"] = 2
    assert event.payload == {"a": 1}


def test_get_transition_history(db, seeded):
    session = session_manager.load_or_create(
        db, seeded["conversation"].id, seeded["tenant"].id, seeded["contact"].id
    )
    session = transition(db, session, SessionState.QUALIFYING)
    session = transition(db, session, SessionState.MATCHING_ST_RECORDS)
    info(db, "unrelated.event", session_id=session.id)

    assert get_transition_history(db, session.id) == [
        ("INBOUND_RECEIVED", "QUALIFYING"),
        ("QUALIFYING", "MATCHING_ST_RECORDS"),
    ]
