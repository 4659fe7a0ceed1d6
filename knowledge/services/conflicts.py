"""
Write-time conflict resolution.

A candidate segment that is near-identical in meaning to an active segment
of the same tenant either replaces it (supersession) or is dropped, so two
conflicting facts are never active at the same time.

Decision per colliding segment:
- both types mutable (conversation, manual): the newer one wins
- otherwise the higher authority wins; equal authority goes to the newer one

The candidate is always the newer segment. If any collision beats it, the
candidate is dropped; otherwise it is stored and supersedes every collision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, List

import knowledge.config as config
from knowledge.context import RequestContext
from knowledge.errors import ConflictStateError
from knowledge.services.retrieval import rank_by_similarity
from knowledge.services.store import KnowledgeStore
from knowledge.types import MUTABLE_SEGMENT_TYPES, SEGMENT_AUTHORITY, KnowledgeSegment

logger = config.logger

ACTION_INSERT = "insert"
ACTION_SUPERSEDE = "supersede"
ACTION_DROP = "drop"
ACTION_REDUNDANT = "redundant"


@dataclass(frozen=True)
class Collision:
    segment: KnowledgeSegment
    score: float
    candidate_wins: bool
    reason: str

    def as_dict(self) -> dict:
        return {
            "segment_id": self.segment.id,
            "segment_type": self.segment.segment_type.value,
            "score": round(self.score, 6),
            "candidate_wins": self.candidate_wins,
            "reason": self.reason,
        }


@dataclass
class ConflictDecision:
    action: str
    collisions: List[Collision] = field(default_factory=list)
    redundant_of: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "action": self.action,
            "redundant_of": self.redundant_of,
            "collisions": [collision.as_dict() for collision in self.collisions],
        }


@dataclass
class ConflictOutcome:
    action: str
    segment: Optional[KnowledgeSegment] = None
    superseded: List[str] = field(default_factory=list)
    redundant_of: Optional[str] = None


def judge(candidate: KnowledgeSegment, existing: KnowledgeSegment) -> tuple[bool, str]:
    """Return (candidate_wins, reason) for one colliding pair."""
    if (
        candidate.created_at is not None
        and existing.created_at is not None
        and existing.created_at > candidate.created_at
    ):
        # Supersession must point forward in time
        return False, "newer_existing"
    if (
        candidate.segment_type in MUTABLE_SEGMENT_TYPES
        and existing.segment_type in MUTABLE_SEGMENT_TYPES
    ):
        return True, "recency"
    candidate_rank = SEGMENT_AUTHORITY[candidate.segment_type]
    existing_rank = SEGMENT_AUTHORITY[existing.segment_type]
    if candidate_rank < existing_rank:
        return False, "authority"
    if candidate_rank > existing_rank:
        return True, "authority"
    return True, "recency"


class ConflictResolver:
    def __init__(self, store: KnowledgeStore):
        self.store = store

    def decide(self, tenant_id: str, candidate: KnowledgeSegment, threshold: float) -> ConflictDecision:
        """Work out what storing ``candidate`` would do, without writing anything."""
        self.store.check_dimension(tenant_id, candidate.dimension)
        active = [
            segment for segment in self.store.find_active(tenant_id)
            if segment.id is None or segment.id != candidate.id
        ]
        ranked = rank_by_similarity(candidate.embedding, active, threshold)
        if not ranked:
            return ConflictDecision(action=ACTION_INSERT)

        for segment, _score in ranked:
            if (
                segment.content_hash == candidate.content_hash
                and segment.segment_type == candidate.segment_type
            ):
                return ConflictDecision(action=ACTION_REDUNDANT, redundant_of=segment.id)

        collisions = []
        for segment, score in ranked:
            wins, reason = judge(candidate, segment)
            collisions.append(Collision(segment=segment, score=score, candidate_wins=wins, reason=reason))
        if all(collision.candidate_wins for collision in collisions):
            return ConflictDecision(action=ACTION_SUPERSEDE, collisions=collisions)
        return ConflictDecision(action=ACTION_DROP, collisions=collisions)

    def _supersede(
        self,
        stored: KnowledgeSegment,
        collisions: List[Collision],
        context: Optional[RequestContext],
        superseded: List[str],
    ) -> None:
        for collision in collisions:
            if self.store.mark_superseded(collision.segment.id, stored.id, context):
                superseded.append(collision.segment.id)

    def apply(
        self,
        tenant_id: str,
        candidate: KnowledgeSegment,
        threshold: float,
        context: Optional[RequestContext] = None,
    ) -> ConflictOutcome:
        """
        Check ``candidate`` against the tenant's active segments and write the
        result. Callers serialize this per tenant.

        A supersession race (``ConflictStateError``) re-runs the check once
        against current state; a second race propagates.
        """
        decision = self.decide(tenant_id, candidate, threshold)
        if decision.action == ACTION_REDUNDANT:
            return ConflictOutcome(action=ACTION_REDUNDANT, redundant_of=decision.redundant_of)
        if decision.action == ACTION_DROP:
            logger.info(
                "conflict_candidate_dropped",
                extra={
                    "tenant_id": tenant_id,
                    "segment_type": candidate.segment_type.value,
                    "winner_ids": [c.segment.id for c in decision.collisions if not c.candidate_wins],
                },
            )
            return ConflictOutcome(action=ACTION_DROP)

        stored = self.store.insert(tenant_id, candidate)
        if decision.action == ACTION_INSERT:
            return ConflictOutcome(action=ACTION_INSERT, segment=stored)

        superseded: List[str] = []
        try:
            self._supersede(stored, decision.collisions, context, superseded)
        except ConflictStateError as exc:
            logger.warning(
                "conflict_state_retry",
                extra={"tenant_id": tenant_id, "segment_id": exc.segment_id, "superseded_by": exc.superseded_by},
            )
            retry = self.decide(tenant_id, stored, threshold)
            if retry.action in (ACTION_DROP, ACTION_REDUNDANT):
                self.store.delete(tenant_id, stored.id, context)
                return ConflictOutcome(action=ACTION_DROP, redundant_of=retry.redundant_of)
            self._supersede(stored, retry.collisions, context, superseded)

        logger.info(
            "conflict_superseded",
            extra={
                "tenant_id": tenant_id,
                "segment_id": stored.id,
                "superseded_ids": superseded,
            },
        )
        return ConflictOutcome(action=ACTION_SUPERSEDE, segment=stored, superseded=superseded)
