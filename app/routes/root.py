"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import knowledge.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "description": "Per-tenant knowledge ingestion and retrieval",
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "knowledge": {
                "ingest": "POST /tenants/{tenant_id}/knowledge",
                "ingest_website": "POST /tenants/{tenant_id}/knowledge/website",
                "ingest_conversation": "POST /tenants/{tenant_id}/knowledge/conversation",
                "query": "POST /tenants/{tenant_id}/knowledge/query",
                "conflicts": "POST /tenants/{tenant_id}/knowledge/conflicts",
                "summary": "GET /tenants/{tenant_id}/knowledge/summary",
                "policy": "GET|PUT /tenants/{tenant_id}/knowledge/policy",
                "delete": "DELETE /tenants/{tenant_id}/knowledge/{segment_id}",
                "purge": "DELETE /tenants/{tenant_id}/knowledge",
            },
        },
    }
