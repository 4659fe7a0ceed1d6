"""
Database engine, sessions and schema migrations for the knowledge store.

The schema is owned by Alembic (``alembic/versions``). Startup either brings
the database to head or refuses to run against an outdated schema.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

import knowledge.config as config

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class DB:
    """Engine and session factory for the app lifespan."""

    engine = None
    SessionLocal = None


def alembic_config(connection=None):
    from alembic.config import Config

    cfg = Config(os.path.join(BASE_DIR, "alembic.ini"))
    cfg.set_main_option("script_location", os.path.join(BASE_DIR, "alembic"))
    if connection is not None:
        # env.py migrates over this connection instead of opening its own
        cfg.attributes["connection"] = connection
    return cfg


def schema_revisions(engine) -> tuple[Optional[str], Optional[str]]:
    """Return (current, head) Alembic revisions for the engine's database."""
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory

    head = ScriptDirectory.from_config(alembic_config()).get_current_head()
    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()
    return current, head


def upgrade_schema(engine, auto_migrate: bool) -> None:
    from alembic import command

    current, head = schema_revisions(engine)
    if current == head:
        return
    if not auto_migrate:
        raise RuntimeError(
            f"Database schema out of date (current={current}, expected={head}). "
            "Run 'alembic upgrade head' or set AUTO_MIGRATE_ON_STARTUP=true."
        )

    config.logger.info("schema_upgrade", extra={"from_revision": current, "to_revision": head})
    with engine.begin() as conn:
        command.upgrade(alembic_config(conn), "head")
    if schema_revisions(engine)[0] != head:
        raise RuntimeError("Database migration did not reach expected revision")


def ensure_vector_extension(engine) -> None:
    """Create the pgvector extension when the Postgres vector backend is on."""
    if not (
        config.AUTO_CREATE_EXTENSIONS
        and config.DB_BACKEND_EFFECTIVE == "postgres"
        and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    ):
        config.logger.info("Skipping pgvector extension creation")
        return
    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))


def create_session_factory(database_url: str):
    """Build an engine and session factory for a database URL."""
    engine_kwargs = {"pool_pre_ping": True}
    if database_url.lower().startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(database_url, **engine_kwargs)
    return engine, sessionmaker(bind=engine, expire_on_commit=False)


def init_db():
    """Connect, prepare the vector extension and bring the schema to head."""
    config.validate_and_prepare_config()
    config.logger.info("Connecting to database...")
    DB.engine, DB.SessionLocal = create_session_factory(config.DATABASE_URL)
    ensure_vector_extension(DB.engine)
    upgrade_schema(DB.engine, config.AUTO_MIGRATE_ON_STARTUP)
    config.logger.info("Database initialized")
    return DB.SessionLocal


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None
