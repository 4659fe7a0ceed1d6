"""
SQLAlchemy-backed knowledge store.

Vectors live in a pgvector column on Postgres and in a JSON column on SQLite.
Supersession, deletion and purges write an audit event in the same commit.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional, List

from sqlalchemy import func, update

from knowledge.audit import log_event
from knowledge.audit_constants import (
    EVENT_SEGMENT_DELETED,
    EVENT_SEGMENT_SUPERSEDED,
    EVENT_TENANT_PURGED,
)
from knowledge.context import RequestContext, resolve_actor
from knowledge.errors import ConflictStateError
from knowledge.models import KnowledgeSegmentRecord, TenantKnowledgePolicyRecord, as_utc, utcnow
from knowledge.services.store import (
    KnowledgeStore,
    check_supersession,
    empty_type_counts,
    next_created_at,
)
from knowledge.types import KnowledgeSegment, TenantKnowledgePolicy, TenantKnowledgeSummary


def _to_segment(row: KnowledgeSegmentRecord) -> KnowledgeSegment:
    # pgvector hands back a numpy array, JSON a list
    return KnowledgeSegment(
        id=row.id,
        tenant_id=row.tenant_id,
        text=row.text,
        segment_type=row.segment_type,
        embedding=[float(value) for value in row.embedding],
        metadata=dict(row.metadata_ or {}),
        created_at=as_utc(row.created_at),
        superseded_by=row.superseded_by,
        superseded_at=as_utc(row.superseded_at),
        content_hash=row.content_hash,
    )


def _to_policy(row: TenantKnowledgePolicyRecord) -> TenantKnowledgePolicy:
    return TenantKnowledgePolicy(
        tenant_id=row.tenant_id,
        conflict_threshold=row.conflict_threshold,
        retrieval_threshold=row.retrieval_threshold,
        top_k=row.top_k,
    )


class SqlKnowledgeStore(KnowledgeStore):
    """Knowledge store over a SQLAlchemy session factory."""

    def __init__(self, session_factory, dimension: Optional[int] = None):
        super().__init__(dimension)
        self.session_factory = session_factory

    def _active_query(self, db, tenant_id: str):
        return (
            db.query(KnowledgeSegmentRecord)
            .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
            .filter(KnowledgeSegmentRecord.superseded_by.is_(None))
        )

    def insert(self, tenant_id: str, segment: KnowledgeSegment) -> KnowledgeSegment:
        db = self.session_factory()
        try:
            self.check_dimension(tenant_id, segment.dimension)
            latest = (
                db.query(func.max(KnowledgeSegmentRecord.created_at))
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .scalar()
            )
            row = KnowledgeSegmentRecord(
                tenant_id=tenant_id,
                segment_type=segment.segment_type.value,
                text=segment.text,
                content_hash=segment.content_hash,
                embedding=list(segment.embedding),
                embedding_dim=segment.dimension,
                metadata_=dict(segment.metadata or {}),
                created_at=next_created_at(latest),
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_segment(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, tenant_id: str, segment_id: str) -> Optional[KnowledgeSegment]:
        db = self.session_factory()
        try:
            row = (
                db.query(KnowledgeSegmentRecord)
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .filter(KnowledgeSegmentRecord.id == segment_id)
                .first()
            )
            return _to_segment(row) if row is not None else None
        finally:
            db.close()

    def find_active(self, tenant_id: str) -> List[KnowledgeSegment]:
        db = self.session_factory()
        try:
            return [_to_segment(row) for row in self._active_query(db, tenant_id).all()]
        finally:
            db.close()

    def recent_active(self, tenant_id: str, limit: int) -> List[KnowledgeSegment]:
        db = self.session_factory()
        try:
            rows = (
                self._active_query(db, tenant_id)
                .order_by(KnowledgeSegmentRecord.created_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_segment(row) for row in rows]
        finally:
            db.close()

    def mark_superseded(self, old_id: str, new_id: str, context: Optional[RequestContext] = None) -> bool:
        db = self.session_factory()
        try:
            old_row = db.get(KnowledgeSegmentRecord, old_id)
            new_row = db.get(KnowledgeSegmentRecord, new_id)
            old = _to_segment(old_row) if old_row is not None else None
            new = _to_segment(new_row) if new_row is not None else None
            if not check_supersession(old, new, old_id, new_id):
                return False

            # Conditional write so a concurrent supersession is detected, not overwritten
            result = db.execute(
                update(KnowledgeSegmentRecord)
                .where(KnowledgeSegmentRecord.id == old_id)
                .where(KnowledgeSegmentRecord.superseded_by.is_(None))
                .values(superseded_by=new_id, superseded_at=utcnow())
            )
            if result.rowcount == 0:
                db.rollback()
                db.expire_all()
                current = db.get(KnowledgeSegmentRecord, old_id)
                if current is not None and current.superseded_by == new_id:
                    return False
                raise ConflictStateError(old_id, current.superseded_by if current else None, new_id)

            actor_type, actor_id = resolve_actor(context)
            log_event(
                db,
                tenant_id=old.tenant_id,
                event_type=EVENT_SEGMENT_SUPERSEDED,
                actor_type=actor_type,
                actor_id=actor_id,
                target_ids=[old_id],
                reason="conflict_resolution",
                request_id=context.request_id if context else None,
                metadata={
                    "superseded_by": new_id,
                    "old_type": old.segment_type.value,
                    "new_type": new.segment_type.value,
                },
            )
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, tenant_id: str, segment_id: str, context: Optional[RequestContext] = None) -> bool:
        db = self.session_factory()
        try:
            row = (
                db.query(KnowledgeSegmentRecord)
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .filter(KnowledgeSegmentRecord.id == segment_id)
                .first()
            )
            if row is None:
                return False

            # SQLite does not enforce ON DELETE SET NULL without a pragma
            reactivated = db.execute(
                update(KnowledgeSegmentRecord)
                .where(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .where(KnowledgeSegmentRecord.superseded_by == segment_id)
                .values(superseded_by=None, superseded_at=None)
            ).rowcount
            db.delete(row)

            actor_type, actor_id = resolve_actor(context)
            log_event(
                db,
                tenant_id=tenant_id,
                event_type=EVENT_SEGMENT_DELETED,
                actor_type=actor_type,
                actor_id=actor_id,
                target_ids=[segment_id],
                reason="tenant_request",
                request_id=context.request_id if context else None,
                metadata={"segment_type": row.segment_type, "reactivated_count": reactivated},
            )
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_all(self, tenant_id: str, context: Optional[RequestContext] = None) -> int:
        db = self.session_factory()
        try:
            # Pointers first so no row references one being removed mid-delete
            db.execute(
                update(KnowledgeSegmentRecord)
                .where(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .values(superseded_by=None)
            )
            deleted = (
                db.query(KnowledgeSegmentRecord)
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .delete(synchronize_session=False)
            )
            actor_type, actor_id = resolve_actor(context)
            log_event(
                db,
                tenant_id=tenant_id,
                event_type=EVENT_TENANT_PURGED,
                actor_type=actor_type,
                actor_id=actor_id,
                target_ids=[],
                count_affected=deleted,
                reason="tenant_request",
                request_id=context.request_id if context else None,
            )
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def summarize(self, tenant_id: str) -> TenantKnowledgeSummary:
        db = self.session_factory()
        try:
            is_active = KnowledgeSegmentRecord.superseded_by.is_(None)
            rows = (
                db.query(
                    KnowledgeSegmentRecord.segment_type,
                    is_active,
                    func.count(KnowledgeSegmentRecord.id),
                )
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .group_by(KnowledgeSegmentRecord.segment_type, is_active)
                .all()
            )
            latest = (
                self._active_query(db, tenant_id)
                .with_entities(func.max(KnowledgeSegmentRecord.created_at))
                .scalar()
            )
        finally:
            db.close()

        active_counts: Counter = Counter()
        superseded = 0
        for segment_type, active, count in rows:
            if active:
                active_counts[segment_type] += count
            else:
                superseded += count
        counts = empty_type_counts()
        counts.update(active_counts)
        return TenantKnowledgeSummary(
            tenant_id=tenant_id,
            total=sum(active_counts.values()),
            counts_by_type=counts,
            superseded_count=superseded,
            latest_created_at=as_utc(latest),
        )

    def tenant_dimension(self, tenant_id: str) -> Optional[int]:
        db = self.session_factory()
        try:
            return (
                db.query(KnowledgeSegmentRecord.embedding_dim)
                .filter(KnowledgeSegmentRecord.tenant_id == tenant_id)
                .limit(1)
                .scalar()
            )
        finally:
            db.close()

    def get_policy(self, tenant_id: str) -> Optional[TenantKnowledgePolicy]:
        db = self.session_factory()
        try:
            row = db.get(TenantKnowledgePolicyRecord, tenant_id)
            return _to_policy(row) if row is not None else None
        finally:
            db.close()

    def set_policy(self, policy: TenantKnowledgePolicy) -> TenantKnowledgePolicy:
        db = self.session_factory()
        try:
            row = db.get(TenantKnowledgePolicyRecord, policy.tenant_id)
            if row is None:
                row = TenantKnowledgePolicyRecord(tenant_id=policy.tenant_id)
                db.add(row)
            row.conflict_threshold = policy.conflict_threshold
            row.retrieval_threshold = policy.retrieval_threshold
            row.top_k = policy.top_k
            row.updated_at = utcnow()
            db.commit()
            db.refresh(row)
            return _to_policy(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
