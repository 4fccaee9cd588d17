import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.auth import get_admin_auth
from app.api.dependencies import get_crm_client, get_session_or_404, get_tenant_or_404
from app.db.deps import get_db
from app.db.models import AgentConfig, AgentSession, Tenant
from app.schemas.agent import (
    AgentConfigResponse,
    AgentConfigUpdate,
    HandoffRequestBody,
    HandoffResponse,
    SessionDetailResponse,
    SessionResponse,
    TransitionEntry,
)
from app.services.handoff_service import handoff
from app.services.integrations.crm_client import FieldServiceCrmClient
from app.services.session_manager import get_session_by_conversation, reset_session
from app.services.system_event_service import get_transition_history

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sessions/{session_id}", response_model=SessionDetailResponse)
def get_session_detail(
    session: AgentSession = Depends(get_session_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Session fields plus the (from, to) transition history, oldest first."""
    history = get_transition_history(db, session.id)
    return SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        transitions=[TransitionEntry(from_state=f, to_state=t) for f, t in history],
    )


@router.post("/sessions/{session_id}/reset", response_model=SessionResponse)
def reset_agent_session(
    session: AgentSession = Depends(get_session_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Human reset: back to INBOUND_RECEIVED so automation resumes on the next message."""
    session = reset_session(db, session, actor="admin")
    return SessionResponse.model_validate(session)


@router.post("/sessions/{session_id}/handoff", response_model=HandoffResponse)
async def handoff_agent_session(
    body: HandoffRequestBody | None = None,
    session: AgentSession = Depends(get_session_or_404),
    db: Session = Depends(get_db),
    crm: FieldServiceCrmClient = Depends(get_crm_client),
    _auth: bool = Security(get_admin_auth),
):
    """
    Stop automation and create the staff follow-up record.

    Terminal sessions keep their state; the record is still created if missing.
    """
    reason = (body.reason if body and body.reason else None) or "Manual handoff"
    session, record = await handoff(db, session, reason, crm)
    return HandoffResponse(
        session=SessionResponse.model_validate(session),
        booking_id=record.booking_id,
        record_created=record.created,
        error=record.error,
    )


@router.post(
    "/tenants/{tenant_id}/conversations/{conversation_id}/session/reset",
    response_model=SessionResponse,
)
def reset_conversation_session(
    conversation_id: int,
    tenant: Tenant = Depends(get_tenant_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    session = get_session_by_conversation(db, conversation_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.tenant_id != tenant.id:
        raise HTTPException(status_code=403, detail="Session belongs to another tenant")
    session = reset_session(db, session, actor="admin")
    return SessionResponse.model_validate(session)


def _get_config(db: Session, tenant_id: int) -> AgentConfig | None:
    return db.execute(select(AgentConfig).where(AgentConfig.tenant_id == tenant_id)).scalar_one_or_none()


@router.get("/tenants/{tenant_id}/agent-config", response_model=AgentConfigResponse)
def get_agent_config(
    tenant: Tenant = Depends(get_tenant_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    config = _get_config(db, tenant.id)
    if config is None:
        raise HTTPException(status_code=404, detail="Agent config not found")
    return AgentConfigResponse.model_validate(config)


@router.put("/tenants/{tenant_id}/agent-config", response_model=AgentConfigResponse)
def update_agent_config(
    body: AgentConfigUpdate,
    tenant: Tenant = Depends(get_tenant_or_404),
    db: Session = Depends(get_db),
    _auth: bool = Security(get_admin_auth),
):
    """Create or partially update the tenant's agent configuration."""
    config = _get_config(db, tenant.id)
    if config is None:
        config = AgentConfig(tenant_id=tenant.id)
        db.add(config)

    changes = body.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(config, key, value)
    db.commit()
    db.refresh(config)
    logger.info(f"Agent config for tenant {tenant.id} updated: {sorted(changes)}")
    return AgentConfigResponse.model_validate(config)
