"""
Session state, outcome and intent constants - centralized to avoid circular imports.
"""

from enum import StrEnum


class SessionState(StrEnum):
    """Where a booking session is in the conversation flow."""

    INBOUND_RECEIVED = "INBOUND_RECEIVED"
    QUALIFYING = "QUALIFYING"
    COLLECTING_ADDRESS = "COLLECTING_ADDRESS"
    AWAITING_NAME = "AWAITING_NAME"
    MATCHING_ST_RECORDS = "MATCHING_ST_RECORDS"
    AWAITING_IDENTITY_CONFIRM = "AWAITING_IDENTITY_CONFIRM"
    AWAITING_ADDRESS_CONFIRM = "AWAITING_ADDRESS_CONFIRM"
    CREATING_ST_CUSTOMER = "CREATING_ST_CUSTOMER"
    PROPOSING_TIMES = "PROPOSING_TIMES"
    BOOKING_JOB = "BOOKING_JOB"

    # Terminal
    CONFIRMED = "CONFIRMED"
    HANDOFF_TO_CSR = "HANDOFF_TO_CSR"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class SessionOutcome(StrEnum):
    PENDING = "PENDING"
    FULL_BOOKING = "FULL_BOOKING"
    CSR_BOOKING = "CSR_BOOKING"
    NEEDS_HUMAN = "NEEDS_HUMAN"
    NOT_INTERESTED = "NOT_INTERESTED"
    OPT_OUT = "OPT_OUT"


class Intent(StrEnum):
    """Coded classification of a customer's SMS reply."""

    BOOK_YES = "BOOK_YES"  # Ready to book
    INTERESTED = "INTERESTED"  # Interested but not committing
    INFO_REQUEST = "INFO_REQUEST"  # Asking a question
    RESCHEDULE = "RESCHEDULE"  # Wants to change an existing appointment
    NOT_NOW = "NOT_NOW"  # Maybe later
    NOT_INTERESTED = "NOT_INTERESTED"  # Clear no
    OPT_OUT = "OPT_OUT"  # STOP, UNSUBSCRIBE, etc.
    WRONG_NUMBER = "WRONG_NUMBER"
    CALL_ME = "CALL_ME"  # Wants a person to call them
    CONFIRM_YES = "CONFIRM_YES"  # "yes, that's me" / "that's my address"
    CONFIRM_NO = "CONFIRM_NO"  # "no, that's not me" / "wrong address"
    UNCLEAR = "UNCLEAR"


class MatchedBy(StrEnum):
    PHONE = "phone"
    ADDRESS = "address"
    NAME = "name"


class MatchConfidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# States that expect a specific kind of answer; the raw reply is interpreted
# against that shape before any classification happens.
MID_FLOW_STATES = {
    SessionState.PROPOSING_TIMES,
    SessionState.AWAITING_NAME,
    SessionState.COLLECTING_ADDRESS,
    SessionState.AWAITING_IDENTITY_CONFIRM,
    SessionState.AWAITING_ADDRESS_CONFIRM,
}

TERMINAL_STATES = {
    SessionState.CONFIRMED,
    SessionState.HANDOFF_TO_CSR,
    SessionState.COMPLETED,
    SessionState.ERROR,
}

# Intents that leave the booking flow no matter which state the session is in
EXIT_INTENTS = {
    Intent.OPT_OUT,
    Intent.NOT_INTERESTED,
    Intent.NOT_NOW,
    Intent.WRONG_NUMBER,
    Intent.CALL_ME,
    Intent.RESCHEDULE,
}

# Message directions on the transport-owned messages table
DIRECTION_INBOUND = "INBOUND"
DIRECTION_OUTBOUND = "OUTBOUND"
