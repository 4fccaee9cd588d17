import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.dependencies import get_orchestrator
from app.db.deps import get_db
from app.db.models import Conversation
from app.schemas.agent import InboundMessageRequest, InboundMessageResponse
from app.services.booking_orchestrator import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/inbound", response_model=InboundMessageResponse)
async def inbound_message(
    body: InboundMessageRequest,
    db: Session = Depends(get_db),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    """
    Transport entrypoint: run one booking-agent step for an inbound SMS.

    The transport sends `response_text` when `should_respond` is true. Messages
    for the same conversation must be delivered one at a time.
    """
    conversation = db.get(Conversation, body.conversation_id)
    if conversation is not None and conversation.tenant_id != body.tenant_id:
        raise HTTPException(status_code=403, detail="Conversation belongs to another tenant")

    result = await orchestrator.handle_inbound_message(
        conversation_id=body.conversation_id,
        tenant_id=body.tenant_id,
        contact_id=body.contact_id,
        message_body=body.message_body,
        message_id=body.message_id,
        offer_context_id=body.offer_context_id,
    )
    if result is None:
        logger.info(f"Automation disabled for conversation {body.conversation_id}")
        return InboundMessageResponse(automation_enabled=False)

    return InboundMessageResponse(
        should_respond=result.should_respond,
        response_text=result.response_text,
        new_state=result.new_state,
        outcome=result.outcome,
        external_ids=result.external_ids,
    )
