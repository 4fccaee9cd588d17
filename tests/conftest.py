import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ["APP_ENV"] = "dev"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["AI_PROVIDER"] = "heuristic"  # Never call a real model from tests
os.environ.pop("OPENAI_API_KEY", None)

from app.db.base import Base
from app.db.deps import get_db
# Import all models so Base.metadata includes every table
import app.db.models as _models  # noqa: F401
from app.db.models import AgentConfig, Contact, Conversation, CrmConfig, OfferContext, Tenant
from app.main import app
from app.middleware.correlation_id import set_correlation_id
from app.services.integrations.crm_client import clear_token_cache
from app.services.messaging.message_composer import reset_cache

# Test database URL (in-memory SQLite for fast tests)
SQLALCHEMY_DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///:memory:")


def is_sqlite() -> bool:
    """Return True if the test database is SQLite (e.g. in-memory tests)."""
    url = SQLALCHEMY_DATABASE_URL or ""
    return url.startswith("sqlite")


# SQLite needs check_same_thread=False and StaticPool; Postgres does not support check_same_thread
if is_sqlite():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Make the app use the same DB
import app.db.session as _db_session

_db_session.engine = engine
_db_session.SessionLocal = TestingSessionLocal


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with database dependency override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _clear_caches():
    """CRM tokens, YAML copy and the correlation id live at process level."""
    clear_token_cache()
    reset_cache()
    set_correlation_id(None)
    yield
    clear_token_cache()


@pytest.fixture
def seeded(db):
    """
    Tenant with an enabled agent + CRM config, one contact and one conversation.

    Returns a dict with tenant, contact, conversation, config, crm_config, offer.
    """
    tenant = Tenant(name="Valley Plumbing LLC", public_name="Valley Plumbing")
    db.add(tenant)
    db.flush()
    contact = Contact(
        tenant_id=tenant.id, first_name="Jane", last_name="Doe", phone="(480) 555-0101",
    )
    offer = OfferContext(tenant_id=tenant.id, offer_type="tune_up", offer_name="$79 AC Tune-Up", price="$79")
    db.add_all([contact, offer])
    db.flush()
    conversation = Conversation(tenant_id=tenant.id, contact_id=contact.id, ai_enabled=True)
    config = AgentConfig(
        tenant_id=tenant.id,
        enabled=True,
        auto_respond=True,
        max_messages_per_session=50,
        qualification_threshold=80,
        default_business_unit_id="10",
        default_job_type_id="20",
        availability_days_ahead=7,
        max_slots_offered=3,
    )
    crm_config = CrmConfig(
        tenant_id=tenant.id,
        enabled=True,
        api_base_url="https://crm.test",
        crm_tenant_id="555",
        client_id="cid",
        client_secret="secret",
        app_key="app-key",
    )
    db.add_all([conversation, config, crm_config])
    db.commit()
    for obj in (tenant, contact, conversation, config, crm_config, offer):
        db.refresh(obj)
    return {
        "tenant": tenant,
        "contact": contact,
        "conversation": conversation,
        "config": config,
        "crm_config": crm_config,
        "offer": offer,
    }
