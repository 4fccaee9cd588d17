"""
Tests for the inbound-message endpoint the SMS transport calls.
"""

import pytest

from app.api.dependencies import get_crm_client
from app.constants.statuses import SessionOutcome, SessionState
from app.main import app
from app.services.session_manager import get_session_by_conversation
from tests.helpers.fakes import FakeCrm, customer_with_location


@pytest.fixture
def fake_crm(client):
    crm = FakeCrm()
    app.dependency_overrides[get_crm_client] = lambda: crm
    return crm


def inbound(seeded, body, message_id=None, **overrides):
    payload = {
        "conversation_id": seeded["conversation"].id,
        "tenant_id": seeded["tenant"].id,
        "contact_id": seeded["contact"].id,
        "message_body": body,
        "message_id": message_id,
    }
    payload.update(overrides)
    return payload


def test_inbound_booking_reply_asks_for_address(client, seeded, fake_crm):
    response = client.post("/agent/inbound", json=inbound(seeded, "yes I want to book", message_id="sms-1"))

    assert response.status_code == 200
    data = response.json()
    assert data["automation_enabled"] is True
    assert data["should_respond"] is True
    assert data["new_state"] == SessionState.COLLECTING_ADDRESS
    assert data["outcome"] is None
    assert data["response_text"]
    assert [op for op, _ in fake_crm.calls][0] == "search_by_phone"


def test_inbound_full_booking(client, db, seeded, fake_crm):
    """Phone match, slot list, slot choice: the job ids come back to the transport."""
    fake_crm.phone_search = customer_with_location("C-1", "Jane Doe", "L-1")

    payload = inbound(seeded, "yes please book me", message_id="sms-1", offer_context_id=seeded["offer"].id)
    first = client.post("/agent/inbound", json=payload).json()
    assert first["new_state"] == SessionState.PROPOSING_TIMES
    assert "1) Tuesday Oct 20, 8-10 AM" in first["response_text"]

    second = client.post("/agent/inbound", json=inbound(seeded, "1", message_id="sms-2")).json()
    assert second["new_state"] == SessionState.CONFIRMED
    assert second["outcome"] == SessionOutcome.FULL_BOOKING
    assert second["external_ids"]["customer_id"] == "C-1"
    assert second["external_ids"]["job_id"] == "J-1"

    session = get_session_by_conversation(db, seeded["conversation"].id)
    assert session.message_count == 2
    assert session.offer_context_id == seeded["offer"].id


def test_inbound_stop_has_no_reply(client, seeded, fake_crm):
    data = client.post("/agent/inbound", json=inbound(seeded, "STOP")).json()

    assert data["should_respond"] is False
    assert data["response_text"] is None
    assert data["outcome"] == SessionOutcome.OPT_OUT


def test_inbound_disabled_agent(client, db, seeded, fake_crm):
    """Automation off: the transport gets a no-op directive and no session is created."""
    seeded["config"].enabled = False
    db.commit()

    data = client.post("/agent/inbound", json=inbound(seeded, "yes")).json()

    assert data["automation_enabled"] is False
    assert data["should_respond"] is False
    assert get_session_by_conversation(db, seeded["conversation"].id) is None


def test_inbound_tenant_mismatch(client, seeded, fake_crm):
    response = client.post("/agent/inbound", json=inbound(seeded, "yes", tenant_id=seeded["tenant"].id + 1))

    assert response.status_code == 403


def test_inbound_validation_error(client, seeded, fake_crm):
    response = client.post("/agent/inbound", json={"conversation_id": seeded["conversation"].id})

    assert response.status_code == 422
