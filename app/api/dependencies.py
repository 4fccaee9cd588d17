"""FastAPI dependencies for API routes."""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.deps import get_db
from app.db.models import AgentSession, Tenant
from app.services.booking_orchestrator import BookingOrchestrator
from app.services.integrations.crm_client import FieldServiceCrmClient
from app.services.integrations.http_client import create_httpx_client
from app.services.intent import IntentClassifier, build_intent_classifier
from app.services.messaging import ResponseGenerator, build_response_generator


def get_session_or_404(session_id: int, db: Session = Depends(get_db)) -> AgentSession:
    """
    Resolve agent session by path parameter session_id; raise 404 if not found.
    """
    session = db.get(AgentSession, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def get_tenant_or_404(tenant_id: int, db: Session = Depends(get_db)) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


@lru_cache
def get_intent_classifier() -> IntentClassifier:
    return build_intent_classifier(settings)


@lru_cache
def get_response_generator() -> ResponseGenerator:
    return build_response_generator(settings)


async def get_crm_client(db: Session = Depends(get_db)) -> AsyncGenerator[FieldServiceCrmClient, None]:
    # One HTTP client per request, closed when the response is sent
    async with create_httpx_client() as http_client:
        yield FieldServiceCrmClient(db, http_client=http_client)


def get_orchestrator(
    db: Session = Depends(get_db),
    classifier: IntentClassifier = Depends(get_intent_classifier),
    generator: ResponseGenerator = Depends(get_response_generator),
    crm: FieldServiceCrmClient = Depends(get_crm_client),
) -> BookingOrchestrator:
    return BookingOrchestrator(db, classifier=classifier, generator=generator, crm=crm)
