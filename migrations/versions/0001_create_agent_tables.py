"""create_agent_tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("public_name", sa.String(200), nullable=True),
        _created_at(),
    )

    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        _created_at(),
    )
    op.create_index("ix_contacts_tenant_id", "contacts", ["tenant_id"])
    op.create_index("ix_contacts_phone", "contacts", ["phone"])

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("contact_id", sa.Integer, sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("ai_enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("crm_booking_id", sa.String(64), nullable=True),
        sa.Column("crm_booking_created_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_conversations_tenant_id", "conversations", ["tenant_id"])
    op.create_index("ix_conversations_contact_id", "conversations", ["contact_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("conversation_id", sa.Integer, sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("direction", sa.String(16), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "offer_contexts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("offer_type", sa.String(50), nullable=False),
        sa.Column("offer_name", sa.String(200), nullable=False),
        sa.Column("price", sa.String(50), nullable=True),
        _created_at(),
    )
    op.create_index("ix_offer_contexts_tenant_id", "offer_contexts", ["tenant_id"])

    op.create_table(
        "agent_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("auto_respond", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("max_messages_per_session", sa.Integer, nullable=False, server_default="50"),
        sa.Column("qualification_threshold", sa.Integer, nullable=False, server_default="80"),
        sa.Column("default_business_unit_id", sa.String(32), nullable=True),
        sa.Column("default_job_type_id", sa.String(32), nullable=True),
        sa.Column("default_campaign_id", sa.String(32), nullable=True),
        sa.Column("availability_days_ahead", sa.Integer, nullable=False, server_default="7"),
        sa.Column("max_slots_offered", sa.Integer, nullable=False, server_default="3"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_agent_configs_tenant_id", "agent_configs", ["tenant_id"], unique=True)

    op.create_table(
        "crm_configs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("api_base_url", sa.String(255), nullable=False),
        sa.Column("crm_tenant_id", sa.String(64), nullable=False),
        sa.Column("client_id", sa.String(255), nullable=False),
        sa.Column("client_secret", sa.String(255), nullable=False),
        sa.Column("app_key", sa.String(255), nullable=False),
        sa.Column("booking_provider", sa.String(64), nullable=True),
    )
    op.create_index("ix_crm_configs_tenant_id", "crm_configs", ["tenant_id"], unique=True)

    op.create_table(
        "agent_sessions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("conversation_id", sa.Integer, sa.ForeignKey("conversations.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer, sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("contact_id", sa.Integer, sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("offer_context_id", sa.Integer, sa.ForeignKey("offer_contexts.id"), nullable=True),
        sa.Column("state", sa.String(32), nullable=False, server_default="INBOUND_RECEIVED"),
        sa.Column("outcome", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_inbound_message_id", sa.String(255), nullable=True),
        sa.Column("qualification_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("booking_intent", sa.String(32), nullable=True),
        sa.Column("confirmed_name", sa.String(200), nullable=True),
        sa.Column("confirmed_address", sa.String(500), nullable=True),
        sa.Column("confirmed_email", sa.String(255), nullable=True),
        sa.Column("preferred_time_slot", sa.String(200), nullable=True),
        sa.Column("crm_customer_id", sa.String(64), nullable=True),
        sa.Column("crm_location_id", sa.String(64), nullable=True),
        sa.Column("crm_job_id", sa.String(64), nullable=True),
        sa.Column("crm_appointment_id", sa.String(64), nullable=True),
        sa.Column("crm_booking_id", sa.String(64), nullable=True),
        sa.Column("pending_match_customer_id", sa.String(64), nullable=True),
        sa.Column("pending_match_location_id", sa.String(64), nullable=True),
        sa.Column("pending_match_name", sa.String(200), nullable=True),
        sa.Column("pending_match_address", sa.String(500), nullable=True),
        sa.Column("pending_match_by", sa.String(16), nullable=True),
        sa.Column("rejected_customer_ids", sa.JSON, nullable=True),
        sa.Column("available_slots", sa.JSON, nullable=True),
        sa.Column("selected_slot_index", sa.Integer, nullable=True),
        sa.Column("last_intent", sa.String(32), nullable=True),
        sa.Column("last_intent_confidence", sa.Float, nullable=True),
        sa.Column("handoff_reason", sa.String(255), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    # One session per conversation
    op.create_index("ix_agent_sessions_conversation_id", "agent_sessions", ["conversation_id"], unique=True)
    op.create_index("ix_agent_sessions_tenant_id", "agent_sessions", ["tenant_id"])
    op.create_index("ix_agent_sessions_contact_id", "agent_sessions", ["contact_id"])

    op.create_table(
        "system_events",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("session_id", sa.Integer, sa.ForeignKey("agent_sessions.id"), nullable=True),
        sa.Column("payload", sa.JSON, nullable=True),
        _created_at(),
    )
    op.create_index("ix_system_events_event_type", "system_events", ["event_type"])
    op.create_index("ix_system_events_session_id", "system_events", ["session_id"])
    op.create_index("ix_system_events_created_at", "system_events", ["created_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("system_events")
    op.drop_table("agent_sessions")
    op.drop_table("crm_configs")
    op.drop_table("agent_configs")
    op.drop_table("offer_contexts")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("contacts")
    op.drop_table("tenants")
