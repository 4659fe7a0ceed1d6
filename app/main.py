"""
FastAPI app wiring for the tenant knowledge service.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

import knowledge.config as config
from knowledge.db import DB, dispose_db, init_db
from knowledge.services.embeddings import EmbeddingClient
from knowledge.services.knowledge_service import KnowledgeService, KnowledgeSettings
from knowledge.services.sql_store import SqlKnowledgeStore
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.knowledge import router as knowledge_router
from app.routes.root import router as root_router


def build_knowledge_service(session_factory) -> KnowledgeService:
    """Assemble the service from configuration and an open session factory."""
    store = SqlKnowledgeStore(session_factory, dimension=config.EMBEDDING_DIM)
    return KnowledgeService(
        store=store,
        embedder=EmbeddingClient(),
        settings=KnowledgeSettings.from_config(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    app.state.knowledge = build_knowledge_service(DB.SessionLocal)
    try:
        yield
    finally:
        await app.state.knowledge.aclose()
        app.state.knowledge = None
        dispose_db()


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title="Tenant Knowledge", redirect_slashes=False, lifespan=lifespan_handler)
    configure_middleware(app)
    app.include_router(health_router)
    app.include_router(root_router)
    app.include_router(knowledge_router)
    return app


app = create_app()
