"""
Health and dependency endpoints.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy import text

import knowledge.config as config
from knowledge.db import DB, schema_revisions
from knowledge.errors import EmbeddingProviderError


router = APIRouter()


def _check_db_health() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            ext_version = None
            pgvector_installed = True
            if config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
                ext_version = conn.execute(
                    text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
                ).scalar()
                pgvector_installed = bool(ext_version)
    except Exception as exc:
        return {"ok": False, "error": str(exc)}

    current_rev, head_rev = schema_revisions(DB.engine)
    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "pgvector_installed": pgvector_installed,
        "pgvector_version": ext_version,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


async def _check_embedding_health(request: Request, check_external: bool) -> dict:
    service = getattr(request.app.state, "knowledge", None)
    if service is None:
        return {"status": "unavailable", "checked": False}

    embedder = service.embedder
    breaker_status = embedder.circuit_breaker.status()
    embedding_status = {
        "status": "unknown",
        "model": embedder.model,
        "circuit_breaker": breaker_status,
        "checked": False,
    }

    if breaker_status.get("open"):
        embedding_status["status"] = "cooldown"
        return embedding_status

    if check_external and config.EMBEDDING_HEALTHCHECK_ENABLED:
        embedding_status["checked"] = True
        start = time.time()
        try:
            await embedder.embed_one("healthcheck")
            embedding_status["status"] = "ok"
            embedding_status["latency_ms"] = int((time.time() - start) * 1000)
        except EmbeddingProviderError as exc:
            embedding_status["status"] = "error"
            embedding_status["error"] = str(exc)
        return embedding_status

    embedding_status["status"] = "skipped" if check_external else "ready"
    return embedding_status


def _database_unhealthy(db_health: dict) -> bool:
    vector_required = config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    return not db_health.get("ok") or (vector_required and not db_health.get("pgvector_installed"))


@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    db_health = _check_db_health()
    embedding_status = await _check_embedding_health(request, check_external=False)
    if _database_unhealthy(db_health):
        raise HTTPException(
            status_code=503,
            detail={"database": db_health, "embedding_provider": embedding_status},
        )

    return {
        "status": "healthy",
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "database": db_health,
        "embedding_provider": embedding_status,
    }


@router.get("/health/deps")
async def health_deps(request: Request):
    """Dependency health checks (optional embedding provider probe)."""
    db_health = _check_db_health()
    if _database_unhealthy(db_health):
        raise HTTPException(status_code=503, detail={"database": db_health})

    embedding_status = await _check_embedding_health(request, check_external=True)

    return {
        "status": "healthy",
        "service": config.SERVICE_NAME,
        "database": db_health,
        "embedding_provider": embedding_status,
    }
