"""
Conversation context for handoffs and collaborators.

- load_history: recent messages as {role, body} dicts for the classifier/generator
- build_conversation_summary: bounded plain-text transcript for the CRM handoff record
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.statuses import DIRECTION_OUTBOUND
from app.core.config import settings
from app.db.models import Message

logger = logging.getLogger(__name__)

ROLE_CUSTOMER = "customer"
ROLE_BUSINESS = "business"


def _recent_messages(db: Session, conversation_id: int, limit: int) -> list[Message]:
    # Most recent first (id breaks created_at ties), then flipped to oldest first
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    return list(reversed(db.execute(stmt).scalars().all()))


def load_history(db: Session, conversation_id: int, limit: int | None = None) -> list[dict[str, str]]:
    """
    Recent conversation history, oldest first.

    Returns:
        List of {"role": "customer"|"business", "body": str}
    """
    messages = _recent_messages(db, conversation_id, limit or settings.history_window)
    return [
        {
            "role": ROLE_BUSINESS if m.direction == DIRECTION_OUTBOUND else ROLE_CUSTOMER,
            "body": m.body,
        }
        for m in messages
    ]


def build_conversation_summary(
    db: Session,
    conversation_id: int,
    max_messages: int | None = None,
    max_chars: int | None = None,
) -> str:
    """
    Plain-text transcript of the last messages for staff.

    Format is one line per message: "[2026-10-18 14:05] CUSTOMER: body". When the
    transcript exceeds max_chars the oldest lines are dropped first.

    Args:
        db: Database session
        conversation_id: Conversation to summarize
        max_messages: Number of most recent messages considered
        max_chars: Upper bound on the returned text

    Returns:
        Summary text ("(no messages)" for an empty conversation)
    """
    max_messages = max_messages or settings.summary_max_messages
    max_chars = max_chars or settings.summary_max_chars

    lines = []
    for m in _recent_messages(db, conversation_id, max_messages):
        who = "AGENT" if m.direction == DIRECTION_OUTBOUND else "CUSTOMER"
        stamp = m.created_at.strftime("%Y-%m-%d %H:%M") if m.created_at else "-"
        lines.append(f"[{stamp}] {who}: {m.body}")

    if not lines:
        return "(no messages)"

    # Keep the newest lines that fit
    kept: list[str] = []
    total = 0
    for line in reversed(lines):
        extra = len(line) + (1 if kept else 0)
        if total + extra > max_chars:
            break
        kept.append(line)
        total += extra

    if not kept:
        return lines[-1][: max_chars]
    return "\n".join(reversed(kept))
