"""
State machine service - defines allowed session state transitions and provides transition helper.

This centralizes all state transition logic so every change of `state`/`outcome`:
- is validated against ALLOWED_TRANSITIONS and the per-state field requirements
- is committed before the caller moves on
- emits exactly one `session.transition` SystemEvent
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_SESSION_TRANSITION
from app.constants.statuses import TERMINAL_STATES, SessionOutcome, SessionState
from app.db.models import AgentSession

logger = logging.getLogger(__name__)


class InvalidTransition(ValueError):
    """Raised when a transition is not allowed from the session's current state."""


class SessionInvariantError(ValueError):
    """Raised when a session lacks the fields its target state requires."""


# Reachable from every non-terminal state
_EXIT_STATES = [
    SessionState.HANDOFF_TO_CSR,
    SessionState.COMPLETED,
    SessionState.ERROR,
]

# Format: {from_state: [allowed_to_states]}
ALLOWED_TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.INBOUND_RECEIVED: [
        SessionState.QUALIFYING,
        *_EXIT_STATES,
    ],
    SessionState.QUALIFYING: [
        SessionState.MATCHING_ST_RECORDS,
        *_EXIT_STATES,
    ],
    SessionState.MATCHING_ST_RECORDS: [
        SessionState.AWAITING_IDENTITY_CONFIRM,
        SessionState.AWAITING_ADDRESS_CONFIRM,
        SessionState.COLLECTING_ADDRESS,
        SessionState.AWAITING_NAME,
        SessionState.CREATING_ST_CUSTOMER,
        SessionState.PROPOSING_TIMES,
        *_EXIT_STATES,
    ],
    SessionState.COLLECTING_ADDRESS: [
        SessionState.MATCHING_ST_RECORDS,
        *_EXIT_STATES,
    ],
    SessionState.AWAITING_NAME: [
        SessionState.MATCHING_ST_RECORDS,
        *_EXIT_STATES,
    ],
    SessionState.AWAITING_IDENTITY_CONFIRM: [
        SessionState.PROPOSING_TIMES,  # Confirmed - straight to slots, no second resolver pass
        SessionState.COLLECTING_ADDRESS,  # Declined, or confirmed but location unknown
        *_EXIT_STATES,
    ],
    SessionState.AWAITING_ADDRESS_CONFIRM: [
        SessionState.PROPOSING_TIMES,
        SessionState.COLLECTING_ADDRESS,
        *_EXIT_STATES,
    ],
    SessionState.CREATING_ST_CUSTOMER: [
        SessionState.PROPOSING_TIMES,
        *_EXIT_STATES,
    ],
    SessionState.PROPOSING_TIMES: [
        SessionState.BOOKING_JOB,
        *_EXIT_STATES,
    ],
    SessionState.BOOKING_JOB: [
        SessionState.CONFIRMED,
        SessionState.HANDOFF_TO_CSR,
        SessionState.ERROR,
    ],
    # Terminal states - only a human reset leaves them
    SessionState.CONFIRMED: [],
    SessionState.HANDOFF_TO_CSR: [],
    SessionState.COMPLETED: [],
    SessionState.ERROR: [],
}

# Outcome each terminal state may carry
TERMINAL_OUTCOMES: dict[SessionState, set[SessionOutcome]] = {
    SessionState.CONFIRMED: {SessionOutcome.FULL_BOOKING},
    SessionState.HANDOFF_TO_CSR: {SessionOutcome.NEEDS_HUMAN, SessionOutcome.CSR_BOOKING},
    SessionState.COMPLETED: {SessionOutcome.NOT_INTERESTED, SessionOutcome.OPT_OUT},
    SessionState.ERROR: {SessionOutcome.NEEDS_HUMAN},
}


def is_transition_allowed(from_state: str, to_state: str) -> bool:
    """
    Check if a state transition is allowed.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed = ALLOWED_TRANSITIONS.get(SessionState(from_state), [])
    return SessionState(to_state) in allowed


def get_allowed_transitions(from_state: str) -> list[SessionState]:
    return ALLOWED_TRANSITIONS.get(SessionState(from_state), [])


def is_terminal_state(state: str) -> bool:
    return SessionState(state) in TERMINAL_STATES


def validate_session_for_state(session: AgentSession, state: SessionState) -> None:
    """
    Check the fields a state requires are present on the session.

    Raises:
        SessionInvariantError: If a required field is missing
    """
    missing: list[str] = []
    if state in (SessionState.AWAITING_IDENTITY_CONFIRM, SessionState.AWAITING_ADDRESS_CONFIRM):
        if not session.pending_match_customer_id:
            missing.append("pending_match_customer_id")
    elif state == SessionState.PROPOSING_TIMES:
        if not session.crm_customer_id:
            missing.append("crm_customer_id")
        if not session.crm_location_id:
            missing.append("crm_location_id")
        if not session.available_slots:
            missing.append("available_slots")
    elif state == SessionState.BOOKING_JOB:
        if not session.available_slots:
            missing.append("available_slots")
        if session.selected_slot_index is None:
            missing.append("selected_slot_index")
    elif state == SessionState.CONFIRMED:
        if not session.crm_job_id:
            missing.append("crm_job_id")

    if missing:
        raise SessionInvariantError(
            f"Session {session.id} cannot enter {state}: missing {', '.join(missing)}"
        )


def transition(
    db: Session,
    session: AgentSession,
    to_state: SessionState,
    reason: str | None = None,
    outcome: SessionOutcome | None = None,
    lock_row: bool = True,
) -> AgentSession:
    """
    Move a session to a new state (with validation and durable commit).

    A transition to the state the session is already in is a no-op and emits no
    event. Terminal states must be entered together with one of their outcomes.

    Args:
        db: Database session
        session: AgentSession (reloaded with SELECT FOR UPDATE if lock_row=True)
        to_state: Target state
        reason: Optional reason, stored on the transition event (and on the
            session for handoffs)
        outcome: Outcome to record; required when entering a terminal state
        lock_row: Whether to lock the row before checking the current state

    Returns:
        The (possibly reloaded) session

    Raises:
        InvalidTransition: If the transition or outcome is not allowed
        SessionInvariantError: If the session lacks fields the target state requires
    """
    from_state = SessionState(session.state)
    to_state = SessionState(to_state)

    if from_state == to_state:
        return session

    if not is_transition_allowed(from_state, to_state):
        logger.warning(
            f"Invalid state transition attempted: {from_state} -> {to_state} for session {session.id}"
        )
        raise InvalidTransition(
            f"Invalid state transition: {from_state} -> {to_state}. "
            f"Allowed transitions from {from_state}: {[s.value for s in get_allowed_transitions(from_state)]}"
        )

    if to_state in TERMINAL_STATES:
        if outcome is None or SessionOutcome(outcome) not in TERMINAL_OUTCOMES[to_state]:
            raise InvalidTransition(f"State {to_state} cannot carry outcome {outcome}")
    elif outcome is not None and SessionOutcome(outcome) != SessionOutcome.PENDING:
        raise InvalidTransition(f"Non-terminal state {to_state} cannot carry outcome {outcome}")

    if lock_row:
        stmt = select(AgentSession).where(AgentSession.id == session.id).with_for_update()
        locked = db.execute(stmt).scalar_one_or_none()
        if locked is None:
            raise InvalidTransition(f"Session {session.id} not found")
        if locked.state != from_state:
            raise InvalidTransition(
                f"Session state changed during transition. Expected '{from_state}', "
                f"but session is now in '{locked.state}'"
            )
        session = locked

    validate_session_for_state(session, to_state)

    session.state = to_state.value
    if outcome is not None:
        session.outcome = SessionOutcome(outcome).value
    if reason and to_state in (SessionState.HANDOFF_TO_CSR, SessionState.ERROR):
        session.handoff_reason = reason[:255]

    db.commit()
    db.refresh(session)

    from app.services.system_event_service import log_event

    log_event(
        db,
        level="WARN" if to_state == SessionState.ERROR else "INFO",
        event_type=EVENT_SESSION_TRANSITION,
        session_id=session.id,
        payload={
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
            "outcome": session.outcome,
        },
    )
    return session
