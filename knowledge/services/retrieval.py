"""
Similarity retrieval over a tenant's active segments.
"""

from __future__ import annotations

from typing import List, Sequence

from knowledge.errors import DimensionMismatchError
from knowledge.services.similarity import cosine_scores
from knowledge.services.store import KnowledgeStore
from knowledge.types import KnowledgeSegment
from knowledge.validators import validate_limit, validate_unit_interval, validate_vector
import knowledge.config as config


def rank_by_similarity(
    query_vector: Sequence[float],
    segments: Sequence[KnowledgeSegment],
    threshold: float,
) -> List[tuple[KnowledgeSegment, float]]:
    """
    Score segments against a query, keep those at or above ``threshold``,
    most similar first. Equal scores go to the newer segment.
    """
    if not segments:
        return []
    scores = cosine_scores(query_vector, [segment.embedding for segment in segments])
    ranked = [
        (segment, float(score))
        for segment, score in zip(segments, scores)
        if score >= threshold
    ]
    ranked.sort(key=lambda item: (item[1], item[0].created_at), reverse=True)
    return ranked


class RetrievalEngine:
    """Brute-force cosine retrieval. Read-only, takes no locks."""

    def __init__(self, store: KnowledgeStore):
        self.store = store

    def retrieve(
        self,
        tenant_id: str,
        query_vector: Sequence[float],
        threshold: float,
        top_k: int,
    ) -> List[tuple[KnowledgeSegment, float]]:
        validate_unit_interval(threshold, "threshold")
        validate_limit(top_k, "top_k", config.MAX_RESULT_LIMIT)
        query_vector = validate_vector(query_vector, "query_vector")

        expected = self.store.expected_dimension(tenant_id)
        if expected is not None and expected != len(query_vector):
            raise DimensionMismatchError(expected, len(query_vector), tenant_id)

        segments = self.store.find_active(tenant_id)
        return rank_by_similarity(query_vector, segments, threshold)[:top_k]
