"""
Tenant-scoped knowledge endpoints.
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.deps import get_knowledge_service, get_request_context
from knowledge.context import RequestContext
from knowledge.services.context_assembly import assemble_context
from knowledge.services.knowledge_service import KnowledgeService
from knowledge.types import SegmentType

router = APIRouter(prefix="/tenants/{tenant_id}/knowledge", tags=["knowledge"])

MetadataValue = Union[str, int, float, bool, None]


class IngestTextRequest(BaseModel):
    text: str
    segment_type: SegmentType = SegmentType.document
    metadata: Optional[dict[str, MetadataValue]] = None


class IngestWebsiteRequest(BaseModel):
    url: str
    html: str
    metadata: Optional[dict[str, MetadataValue]] = None


class IngestConversationRequest(BaseModel):
    user_message: str
    assistant_message: str
    metadata: Optional[dict[str, MetadataValue]] = None


class QueryRequest(BaseModel):
    query: str
    threshold: Optional[float] = None
    top_k: Optional[int] = None
    char_budget: Optional[int] = Field(default=None, ge=0)


class ConflictCheckRequest(BaseModel):
    text: str
    segment_type: SegmentType = SegmentType.document
    threshold: Optional[float] = None


class PolicyRequest(BaseModel):
    conflict_threshold: Optional[float] = None
    retrieval_threshold: Optional[float] = None
    top_k: Optional[int] = None


def _policy_payload(policy) -> dict:
    return {
        "tenant_id": policy.tenant_id,
        "conflict_threshold": policy.conflict_threshold,
        "retrieval_threshold": policy.retrieval_threshold,
        "top_k": policy.top_k,
    }


@router.post("")
async def ingest_text(
    tenant_id: str,
    body: IngestTextRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
    context: RequestContext = Depends(get_request_context),
):
    report = await service.ingest_text(
        tenant_id,
        body.text,
        body.segment_type,
        metadata=body.metadata,
        context=context,
    )
    return report.as_dict()


@router.post("/website")
async def ingest_website(
    tenant_id: str,
    body: IngestWebsiteRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
    context: RequestContext = Depends(get_request_context),
):
    report = await service.ingest_website(
        tenant_id,
        body.html,
        body.url,
        metadata=body.metadata,
        context=context,
    )
    return report.as_dict()


@router.post("/conversation")
async def ingest_conversation(
    tenant_id: str,
    body: IngestConversationRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
    context: RequestContext = Depends(get_request_context),
):
    report = await service.ingest_conversation(
        tenant_id,
        body.user_message,
        body.assistant_message,
        metadata=body.metadata,
        context=context,
    )
    return report.as_dict()


@router.post("/query")
async def query_knowledge(
    tenant_id: str,
    body: QueryRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    results = await service.query(
        tenant_id,
        body.query,
        threshold=body.threshold,
        top_k=body.top_k,
    )
    payload = {
        "tenant_id": tenant_id.strip(),
        "count": len(results),
        "results": [result.as_dict() for result in results],
    }
    if body.char_budget is not None:
        payload["context"] = assemble_context(results, body.char_budget)
    return payload


@router.post("/conflicts")
async def check_conflicts(
    tenant_id: str,
    body: ConflictCheckRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    chunks = await service.detect_conflicts(
        tenant_id,
        body.text,
        body.segment_type,
        threshold=body.threshold,
    )
    return {"tenant_id": tenant_id.strip(), "chunks": chunks}


@router.get("/summary")
async def knowledge_summary(
    tenant_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    summary = await service.get_summary(tenant_id)
    return summary.as_dict()


@router.get("/policy")
async def get_policy(
    tenant_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    return _policy_payload(service.tenant_policy(tenant_id))


@router.put("/policy")
async def put_policy(
    tenant_id: str,
    body: PolicyRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
):
    policy = service.set_tenant_policy(
        tenant_id,
        conflict_threshold=body.conflict_threshold,
        retrieval_threshold=body.retrieval_threshold,
        top_k=body.top_k,
    )
    return _policy_payload(policy)


@router.delete("/{segment_id}")
async def delete_segment(
    tenant_id: str,
    segment_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
    context: RequestContext = Depends(get_request_context),
):
    deleted = await service.delete_memory(tenant_id, segment_id, context=context)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Segment not found: {segment_id}")
    summary = await service.get_summary(tenant_id)
    return {
        "status": "deleted",
        "segment_id": segment_id,
        "knowledge_summary": summary.as_dict(),
    }


@router.delete("")
async def purge_tenant(
    tenant_id: str,
    service: KnowledgeService = Depends(get_knowledge_service),
    context: RequestContext = Depends(get_request_context),
):
    count = await service.delete_all_memories(tenant_id, context=context)
    return {"status": "purged", "tenant_id": tenant_id.strip(), "deleted_count": count}
