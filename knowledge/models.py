"""
Knowledge engine database models
PostgreSQL + pgvector schema (SQLite + JSON vectors for local runs)
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Float, DateTime, ForeignKey, CheckConstraint, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

import knowledge.config as config
from knowledge.types import SEGMENT_TYPES

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except ImportError:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
else:
    EMBEDDING_COLUMN_TYPE = JSON

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON


def _uuid_default() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back without tzinfo; every stored value is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


Base = declarative_base()


# =============================================================================
# Knowledge Segments
# =============================================================================

class KnowledgeSegmentRecord(Base):
    __tablename__ = "knowledge_segments"

    id = Column(String(36), primary_key=True, default=_uuid_default)
    tenant_id = Column(String(100), nullable=False)
    segment_type = Column(String(20), nullable=False)
    text = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    embedding = Column(EMBEDDING_COLUMN_TYPE, nullable=False)
    embedding_dim = Column(Integer, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    superseded_by = Column(
        String(36),
        ForeignKey("knowledge_segments.id", ondelete="SET NULL"),
        nullable=True,
    )
    superseded_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "segment_type IN (" + ", ".join(f"'{value}'" for value in SEGMENT_TYPES) + ")",
            name="check_segment_type",
        ),
        CheckConstraint("embedding_dim > 0", name="check_embedding_dim"),
        Index("ix_knowledge_segments_tenant_active", "tenant_id", "superseded_by"),
        Index("ix_knowledge_segments_tenant_created", "tenant_id", "created_at"),
        Index("ix_knowledge_segments_tenant_hash", "tenant_id", "content_hash"),
    )


# =============================================================================
# Tenant Policies
# =============================================================================

class TenantKnowledgePolicyRecord(Base):
    __tablename__ = "tenant_knowledge_policies"

    tenant_id = Column(String(100), primary_key=True)
    conflict_threshold = Column(Float)
    retrieval_threshold = Column(Float)
    top_k = Column(Integer)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "conflict_threshold IS NULL OR (conflict_threshold > 0 AND conflict_threshold <= 1)",
            name="check_policy_conflict_threshold",
        ),
        CheckConstraint(
            "retrieval_threshold IS NULL OR (retrieval_threshold >= 0 AND retrieval_threshold <= 1)",
            name="check_policy_retrieval_threshold",
        ),
        CheckConstraint("top_k IS NULL OR top_k > 0", name="check_policy_top_k"),
    )


# =============================================================================
# Audit Events
# =============================================================================

class KnowledgeAuditEvent(Base):
    __tablename__ = "knowledge_audit_events"

    event_id = Column(String(36), primary_key=True, default=_uuid_default)
    tenant_id = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_knowledge_audit_events_tenant", "tenant_id", "created_at"),
        Index("ix_knowledge_audit_events_event_type", "event_type"),
    )
