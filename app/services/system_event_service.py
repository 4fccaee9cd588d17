"""
System event logging service.

Structured, leveled records of session transitions and collaborator failures.
All SystemEvent creation goes through log_event (or info/warn/error) so the
payload shape stays consistent and tests can assert on event sequences.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.event_types import EVENT_SESSION_TRANSITION
from app.db.models import SystemEvent

logger = logging.getLogger(__name__)


def _resolve_correlation_id(correlation_id: str | None) -> str | None:
    """Use request-scoped contextvar when not explicitly passed."""
    if correlation_id is not None:
        return correlation_id
    from app.middleware.correlation_id import get_correlation_id

    return get_correlation_id(None)


def log_event(
    db: Session,
    level: str,
    event_type: str,
    session_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> SystemEvent:
    """
    Log a system event to the database.

    Args:
        db: Database session
        level: Event level (INFO, WARN, ERROR)
        event_type: Type of event (e.g., "session.transition", "crm.request_failed")
        session_id: Optional agent session ID associated with the event
        payload: Optional additional event data (dict). Will be normalized/copied.
        exc: Optional exception; if provided, error type and message are added to payload.
        correlation_id: Optional correlation ID for request tracing.

    Returns:
        Created SystemEvent object
    """
    normalized: dict = dict(payload) if payload else {}
    if exc is not None:
        normalized["error"] = {
            "type": type(exc).__name__,
            "message": str(exc)[:500],  # Truncate to avoid huge payloads
        }
    resolved_cid = _resolve_correlation_id(correlation_id)
    if resolved_cid is not None:
        normalized["correlation_id"] = resolved_cid

    event = SystemEvent(
        level=level.upper(),
        event_type=event_type,
        session_id=session_id,
        payload=normalized if normalized else None,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    log_level = {"WARN": logging.WARNING, "ERROR": logging.ERROR}.get(level.upper(), logging.INFO)
    logger.log(log_level, f"event={event_type} session={session_id} payload={normalized}")
    return event


def info(
    db: Session,
    event_type: str,
    session_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> SystemEvent:
    """Log an INFO-level system event."""
    return log_event(
        db, level="INFO", event_type=event_type, session_id=session_id,
        payload=payload, exc=exc, correlation_id=correlation_id,
    )


def warn(
    db: Session,
    event_type: str,
    session_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> SystemEvent:
    """Log a WARN-level system event."""
    return log_event(
        db, level="WARN", event_type=event_type, session_id=session_id,
        payload=payload, exc=exc, correlation_id=correlation_id,
    )


def error(
    db: Session,
    event_type: str,
    session_id: int | None = None,
    payload: dict | None = None,
    exc: BaseException | None = None,
    correlation_id: str | None = None,
) -> SystemEvent:
    """Log an ERROR-level system event."""
    return log_event(
        db, level="ERROR", event_type=event_type, session_id=session_id,
        payload=payload, exc=exc, correlation_id=correlation_id,
    )


def get_transition_history(db: Session, session_id: int) -> list[tuple[str, str]]:
    """
    Return the (from, to) pairs recorded for a session, oldest first.

    Used by admin views and tests to inspect the path a conversation took.
    """
    stmt = (
        select(SystemEvent)
        .where(SystemEvent.session_id == session_id)
        .where(SystemEvent.event_type == EVENT_SESSION_TRANSITION)
        .order_by(SystemEvent.id)
    )
    events = db.execute(stmt).scalars().all()
    return [(e.payload["from"], e.payload["to"]) for e in events if e.payload]
