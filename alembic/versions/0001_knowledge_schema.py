"""Create knowledge segment, policy and audit tables.

Revision ID: 0001_knowledge_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

import knowledge.config as config


revision = "0001_knowledge_schema"
down_revision = None
branch_labels = None
depends_on = None


def _embedding_type(is_postgres: bool):
    if is_postgres and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from pgvector.sqlalchemy import Vector

        return Vector(config.EMBEDDING_DIM)
    return sa.JSON


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "knowledge_segments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tenant_id", sa.String(length=100), nullable=False),
        sa.Column("segment_type", sa.String(length=20), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("embedding", _embedding_type(is_postgres), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "superseded_by",
            sa.String(length=36),
            sa.ForeignKey("knowledge_segments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("superseded_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "segment_type IN ('document', 'conversation', 'website', 'manual')",
            name="check_segment_type",
        ),
        sa.CheckConstraint("embedding_dim > 0", name="check_embedding_dim"),
    )
    op.create_index(
        "ix_knowledge_segments_tenant_active",
        "knowledge_segments",
        ["tenant_id", "superseded_by"],
    )
    op.create_index(
        "ix_knowledge_segments_tenant_created",
        "knowledge_segments",
        ["tenant_id", "created_at"],
    )
    op.create_index(
        "ix_knowledge_segments_tenant_hash",
        "knowledge_segments",
        ["tenant_id", "content_hash"],
    )

    op.create_table(
        "tenant_knowledge_policies",
        sa.Column("tenant_id", sa.String(length=100), primary_key=True),
        sa.Column("conflict_threshold", sa.Float()),
        sa.Column("retrieval_threshold", sa.Float()),
        sa.Column("top_k", sa.Integer()),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "conflict_threshold IS NULL OR (conflict_threshold > 0 AND conflict_threshold <= 1)",
            name="check_policy_conflict_threshold",
        ),
        sa.CheckConstraint(
            "retrieval_threshold IS NULL OR (retrieval_threshold >= 0 AND retrieval_threshold <= 1)",
            name="check_policy_retrieval_threshold",
        ),
        sa.CheckConstraint("top_k IS NULL OR top_k > 0", name="check_policy_top_k"),
    )

    op.create_table(
        "knowledge_audit_events",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("tenant_id", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=255)),
        sa.Column("target_ids", json_type, nullable=False),
        sa.Column("count_affected", sa.Integer()),
        sa.Column("reason", sa.Text()),
        sa.Column("request_id", sa.String(length=255)),
        sa.Column("metadata", json_type),
    )
    op.create_index(
        "ix_knowledge_audit_events_tenant",
        "knowledge_audit_events",
        ["tenant_id", "created_at"],
    )
    op.create_index(
        "ix_knowledge_audit_events_event_type",
        "knowledge_audit_events",
        ["event_type"],
    )


def downgrade() -> None:
    op.drop_index("ix_knowledge_audit_events_event_type", table_name="knowledge_audit_events")
    op.drop_index("ix_knowledge_audit_events_tenant", table_name="knowledge_audit_events")
    op.drop_table("knowledge_audit_events")
    op.drop_table("tenant_knowledge_policies")
    op.drop_index("ix_knowledge_segments_tenant_hash", table_name="knowledge_segments")
    op.drop_index("ix_knowledge_segments_tenant_created", table_name="knowledge_segments")
    op.drop_index("ix_knowledge_segments_tenant_active", table_name="knowledge_segments")
    op.drop_table("knowledge_segments")
