"""
Dependency helpers for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from knowledge.context import ALLOWED_ACTOR_TYPES, RequestContext
from knowledge.services.knowledge_service import KnowledgeService


def get_knowledge_service(request: Request) -> KnowledgeService:
    service = getattr(request.app.state, "knowledge", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Knowledge service not initialized")
    return service


async def get_request_context(
    x_actor_type: Optional[str] = Header(default=None),
    x_actor_id: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
) -> RequestContext:
    # Authentication happens upstream; the gateway forwards who is acting
    actor_type = (x_actor_type or "").strip().lower()
    if actor_type not in ALLOWED_ACTOR_TYPES:
        actor_type = "user" if x_actor_id else "system"
    return RequestContext(
        actor_type=actor_type,
        actor_id=x_actor_id,
        request_id=x_request_id,
        source="http",
    )
