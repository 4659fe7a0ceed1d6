"""
Domain types shared by stores, resolvers and the knowledge service.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional


class SegmentType(str, PyEnum):
    document = "document"
    conversation = "conversation"
    website = "website"
    manual = "manual"


SEGMENT_TYPES = tuple(item.value for item in SegmentType)

# Conversation and manual segments restate facts that change over time.
MUTABLE_SEGMENT_TYPES = frozenset({SegmentType.conversation, SegmentType.manual})

SEGMENT_AUTHORITY = {
    SegmentType.document: 3,
    SegmentType.manual: 3,
    SegmentType.website: 2,
    SegmentType.conversation: 1,
}


def normalize_text(text: str) -> str:
    return " ".join(text.split()).lower()


def content_hash_for(text: str) -> str:
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def coerce_segment_type(value) -> SegmentType:
    if isinstance(value, SegmentType):
        return value
    from knowledge.errors import ValidationIssue

    try:
        return SegmentType(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationIssue(
            f"segment_type must be one of: {', '.join(SEGMENT_TYPES)}",
            field="segment_type",
            error_type="invalid_value",
        ) from exc


@dataclass
class KnowledgeSegment:
    tenant_id: str
    text: str
    segment_type: SegmentType
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    superseded_by: Optional[str] = None
    superseded_at: Optional[datetime] = None
    content_hash: str = ""

    def __post_init__(self) -> None:
        self.segment_type = coerce_segment_type(self.segment_type)
        self.embedding = [float(value) for value in self.embedding]
        if not self.content_hash:
            self.content_hash = content_hash_for(self.text)

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    @property
    def is_active(self) -> bool:
        return self.superseded_by is None


@dataclass(frozen=True)
class TenantKnowledgePolicy:
    tenant_id: str
    conflict_threshold: Optional[float] = None
    retrieval_threshold: Optional[float] = None
    top_k: Optional[int] = None


@dataclass
class TenantKnowledgeSummary:
    tenant_id: str
    total: int
    counts_by_type: dict[str, int]
    superseded_count: int = 0
    latest_created_at: Optional[datetime] = None
    digest: str = ""

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "total": self.total,
            "counts_by_type": dict(self.counts_by_type),
            "superseded_count": self.superseded_count,
            "latest_created_at": (
                self.latest_created_at.isoformat() if self.latest_created_at else None
            ),
            "digest": self.digest,
        }


@dataclass(frozen=True)
class RetrievalResult:
    text: str
    metadata: dict[str, Any]
    score: float
    segment_id: str
    segment_type: SegmentType

    def as_dict(self) -> dict:
        return {
            "segment_id": self.segment_id,
            "segment_type": self.segment_type.value,
            "text": self.text,
            "metadata": dict(self.metadata),
            "score": round(self.score, 6),
        }


@dataclass(frozen=True)
class SkippedChunk:
    index: int
    reason: str
    detail: Optional[str] = None


@dataclass
class IngestionReport:
    tenant_id: str
    segment_type: SegmentType
    chunk_count: int = 0
    stored: list[KnowledgeSegment] = field(default_factory=list)
    superseded: list[str] = field(default_factory=list)
    redundant: list[str] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)
    skipped: list[SkippedChunk] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped

    def as_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "segment_type": self.segment_type.value,
            "chunk_count": self.chunk_count,
            "stored_count": len(self.stored),
            "stored_ids": [segment.id for segment in self.stored],
            "superseded_ids": list(self.superseded),
            "redundant_ids": list(self.redundant),
            "dropped_chunks": list(self.dropped),
            "skipped": [
                {"index": item.index, "reason": item.reason, "detail": item.detail}
                for item in self.skipped
            ],
            "status": "complete" if self.complete else "partial",
        }
