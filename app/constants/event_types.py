"""
Event type constants for SystemEvent.

Use these instead of string literals to ensure consistency.
"""

# ---- Session lifecycle ----
EVENT_SESSION_CREATED = "session.created"
EVENT_SESSION_TRANSITION = "session.transition"
EVENT_SESSION_RESET = "session.reset"
EVENT_SESSION_BACKING_DATA_MISSING = "session.backing_data_missing"
EVENT_LOOP_GUARD_TRIPPED = "session.loop_guard_tripped"

# ---- CRM ----
EVENT_CRM_REQUEST_FAILED = "crm.request_failed"
EVENT_NO_AVAILABILITY = "crm.no_availability"

# ---- Handoff ----
EVENT_HANDOFF_RECORD_CREATED = "handoff.record_created"
EVENT_HANDOFF_RECORD_FAILED = "handoff.record_failed"

# ---- Orchestrator ----
EVENT_UNHANDLED_EXCEPTION = "orchestrator.unhandled_exception"
