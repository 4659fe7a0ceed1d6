"""
Knowledge store contract and the in-memory implementation.

The store is the only component that touches durable state. All similarity
math happens above it, so implementations only need row-level operations.
"""

from __future__ import annotations

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, List

from knowledge.context import RequestContext
from knowledge.errors import ConflictStateError, DimensionMismatchError, ValidationIssue
from knowledge.models import as_utc, utcnow
from knowledge.types import (
    SEGMENT_TYPES,
    KnowledgeSegment,
    TenantKnowledgePolicy,
    TenantKnowledgeSummary,
)

TIMESTAMP_STEP = timedelta(microseconds=1)


def next_created_at(latest: Optional[datetime]) -> datetime:
    """Strictly increasing per-tenant timestamps keep recency ordering total."""
    now = utcnow()
    latest = as_utc(latest)
    if latest is not None and now <= latest:
        return latest + TIMESTAMP_STEP
    return now


def empty_type_counts() -> dict[str, int]:
    return {value: 0 for value in SEGMENT_TYPES}


def check_supersession(old: Optional[KnowledgeSegment], new: Optional[KnowledgeSegment], old_id: str, new_id: str) -> bool:
    """
    Validate a supersession request. Returns False when it is already applied.
    """
    if old is None or new is None:
        missing = old_id if old is None else new_id
        raise ValidationIssue(f"segment {missing} not found", field="segment_id", error_type="not_found")
    if old.tenant_id != new.tenant_id:
        raise ValidationIssue(
            "supersession must stay within one tenant",
            field="segment_id",
            error_type="cross_tenant",
        )
    if old.id == new.id:
        raise ValidationIssue("a segment cannot supersede itself", field="segment_id", error_type="invalid_value")
    if old.superseded_by == new_id:
        return False
    if old.superseded_by is not None:
        raise ConflictStateError(old_id, old.superseded_by, new_id)
    if not (new.created_at and old.created_at and new.created_at > old.created_at):
        raise ValidationIssue(
            "superseding segment must be strictly newer",
            field="segment_id",
            error_type="not_newer",
        )
    return True


class KnowledgeStore(ABC):
    """Row-level persistence for tenant knowledge segments."""

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension

    def expected_dimension(self, tenant_id: str) -> Optional[int]:
        return self.dimension or self.tenant_dimension(tenant_id)

    def check_dimension(self, tenant_id: str, actual: int) -> None:
        expected = self.expected_dimension(tenant_id)
        if expected is not None and expected != actual:
            raise DimensionMismatchError(expected, actual, tenant_id)

    @abstractmethod
    def insert(self, tenant_id: str, segment: KnowledgeSegment) -> KnowledgeSegment:
        """Atomically store one segment; assigns id and created_at."""

    @abstractmethod
    def get(self, tenant_id: str, segment_id: str) -> Optional[KnowledgeSegment]:
        ...

    @abstractmethod
    def find_active(self, tenant_id: str) -> List[KnowledgeSegment]:
        ...

    @abstractmethod
    def recent_active(self, tenant_id: str, limit: int) -> List[KnowledgeSegment]:
        ...

    @abstractmethod
    def mark_superseded(self, old_id: str, new_id: str, context: Optional[RequestContext] = None) -> bool:
        """Returns True when the pointer was written, False if already set."""

    @abstractmethod
    def delete(self, tenant_id: str, segment_id: str, context: Optional[RequestContext] = None) -> bool:
        ...

    @abstractmethod
    def delete_all(self, tenant_id: str, context: Optional[RequestContext] = None) -> int:
        ...

    @abstractmethod
    def summarize(self, tenant_id: str) -> TenantKnowledgeSummary:
        ...

    @abstractmethod
    def tenant_dimension(self, tenant_id: str) -> Optional[int]:
        ...

    @abstractmethod
    def get_policy(self, tenant_id: str) -> Optional[TenantKnowledgePolicy]:
        ...

    @abstractmethod
    def set_policy(self, policy: TenantKnowledgePolicy) -> TenantKnowledgePolicy:
        ...


class InMemoryKnowledgeStore(KnowledgeStore):
    """Thread-safe store for tests and single-process deployments."""

    def __init__(self, dimension: Optional[int] = None):
        super().__init__(dimension)
        self._lock = threading.RLock()
        self._segments: dict[str, KnowledgeSegment] = {}
        self._policies: dict[str, TenantKnowledgePolicy] = {}
        self._latest: dict[str, datetime] = {}

    def _tenant_rows(self, tenant_id: str) -> List[KnowledgeSegment]:
        return [segment for segment in self._segments.values() if segment.tenant_id == tenant_id]

    def insert(self, tenant_id: str, segment: KnowledgeSegment) -> KnowledgeSegment:
        with self._lock:
            self.check_dimension(tenant_id, segment.dimension)
            stored = copy.deepcopy(segment)
            stored.tenant_id = tenant_id
            stored.id = str(uuid.uuid4())
            stored.created_at = next_created_at(self._latest.get(tenant_id))
            stored.superseded_by = None
            stored.superseded_at = None
            self._segments[stored.id] = stored
            self._latest[tenant_id] = stored.created_at
            return copy.deepcopy(stored)

    def get(self, tenant_id: str, segment_id: str) -> Optional[KnowledgeSegment]:
        with self._lock:
            segment = self._segments.get(segment_id)
            if segment is None or segment.tenant_id != tenant_id:
                return None
            return copy.deepcopy(segment)

    def find_active(self, tenant_id: str) -> List[KnowledgeSegment]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._tenant_rows(tenant_id) if s.is_active]

    def recent_active(self, tenant_id: str, limit: int) -> List[KnowledgeSegment]:
        active = self.find_active(tenant_id)
        active.sort(key=lambda segment: segment.created_at, reverse=True)
        return active[:limit]

    def mark_superseded(self, old_id: str, new_id: str, context: Optional[RequestContext] = None) -> bool:
        with self._lock:
            old = self._segments.get(old_id)
            new = self._segments.get(new_id)
            if not check_supersession(old, new, old_id, new_id):
                return False
            old.superseded_by = new_id
            old.superseded_at = utcnow()
            return True

    def delete(self, tenant_id: str, segment_id: str, context: Optional[RequestContext] = None) -> bool:
        with self._lock:
            segment = self._segments.get(segment_id)
            if segment is None or segment.tenant_id != tenant_id:
                return False
            for other in self._tenant_rows(tenant_id):
                if other.superseded_by == segment_id:
                    other.superseded_by = None
                    other.superseded_at = None
            del self._segments[segment_id]
            return True

    def delete_all(self, tenant_id: str, context: Optional[RequestContext] = None) -> int:
        with self._lock:
            doomed = [segment.id for segment in self._tenant_rows(tenant_id)]
            for segment_id in doomed:
                del self._segments[segment_id]
            return len(doomed)

    def summarize(self, tenant_id: str) -> TenantKnowledgeSummary:
        with self._lock:
            rows = self._tenant_rows(tenant_id)
        active = [segment for segment in rows if segment.is_active]
        counts = empty_type_counts()
        counts.update(Counter(segment.segment_type.value for segment in active))
        return TenantKnowledgeSummary(
            tenant_id=tenant_id,
            total=len(active),
            counts_by_type=counts,
            superseded_count=len(rows) - len(active),
            latest_created_at=max((segment.created_at for segment in active), default=None),
        )

    def tenant_dimension(self, tenant_id: str) -> Optional[int]:
        with self._lock:
            for segment in self._tenant_rows(tenant_id):
                return segment.dimension
        return None

    def get_policy(self, tenant_id: str) -> Optional[TenantKnowledgePolicy]:
        with self._lock:
            return self._policies.get(tenant_id)

    def set_policy(self, policy: TenantKnowledgePolicy) -> TenantKnowledgePolicy:
        with self._lock:
            self._policies[policy.tenant_id] = policy
            return policy
