"""
Test database migrations and constraints.

Verifies that:
1. Migrations apply cleanly from scratch and match the models
2. One session per conversation and one config per tenant are enforced
"""

import os
import tempfile
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError

from app.db.base import Base
from app.db.models import AgentConfig, AgentSession

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def migration_config():
    """Alembic config pointed at a temp SQLite file (Alembic needs a file, not in-memory)."""
    fd, temp_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    config = Config()
    config.set_main_option("script_location", str(ROOT / "migrations"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{temp_path}")
    yield config
    if os.path.exists(temp_path):
        os.remove(temp_path)


def test_upgrade_creates_every_model_table(migration_config):
    command.upgrade(migration_config, "head")

    engine = create_engine(migration_config.get_main_option("sqlalchemy.url"))
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert set(Base.metadata.tables) <= tables

        for table_name, table in Base.metadata.tables.items():
            columns = {c["name"] for c in inspector.get_columns(table_name)}
            assert set(table.columns.keys()) == columns, table_name
    finally:
        engine.dispose()


def test_downgrade_removes_tables(migration_config):
    command.upgrade(migration_config, "head")
    command.downgrade(migration_config, "base")

    engine = create_engine(migration_config.get_main_option("sqlalchemy.url"))
    try:
        tables = set(inspect(engine).get_table_names())
        assert not tables & set(Base.metadata.tables)
    finally:
        engine.dispose()


def test_one_session_per_conversation(db, seeded):
    for _ in range(2):
        db.add(
            AgentSession(
                conversation_id=seeded["conversation"].id,
                tenant_id=seeded["tenant"].id,
                contact_id=seeded["contact"].id,
            )
        )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_one_agent_config_per_tenant(db, seeded):
    db.add(AgentConfig(tenant_id=seeded["tenant"].id))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
