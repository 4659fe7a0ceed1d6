"""
Tenant knowledge summaries.

Counts come straight from the store. The human-readable digest is written by
an injected async ``digest_writer`` when one is configured, and by a fixed
template otherwise (or when the writer fails).
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import knowledge.config as config
from knowledge.services.store import KnowledgeStore
from knowledge.types import SEGMENT_TYPES, TenantKnowledgeSummary

logger = config.logger

DIGEST_EXCERPT_CHARS = 200

DigestWriter = Callable[[dict], Awaitable[str]]


def template_digest(summary: TenantKnowledgeSummary) -> str:
    if summary.total == 0:
        return "No knowledge stored yet."
    parts = [
        f"{summary.counts_by_type[value]} {value}"
        for value in SEGMENT_TYPES
        if summary.counts_by_type.get(value)
    ]
    noun = "segment" if summary.total == 1 else "segments"
    digest = f"{summary.total} active knowledge {noun} ({', '.join(parts)})."
    if summary.superseded_count:
        digest += f" {summary.superseded_count} superseded."
    if summary.latest_created_at is not None:
        digest += f" Last updated {summary.latest_created_at.isoformat()}."
    return digest


class KnowledgeSummarizer:
    def __init__(
        self,
        store: KnowledgeStore,
        digest_writer: Optional[DigestWriter] = None,
        sample_size: Optional[int] = None,
    ):
        self.store = store
        self.digest_writer = digest_writer
        self.sample_size = sample_size or config.SUMMARY_SAMPLE_SIZE

    def counts(self, tenant_id: str) -> TenantKnowledgeSummary:
        return self.store.summarize(tenant_id)

    def build_digest_input(self, summary: TenantKnowledgeSummary) -> dict:
        """Structured input for a digest writer: counts plus the newest active segments."""
        recent = self.store.recent_active(summary.tenant_id, self.sample_size)
        return {
            "tenant_id": summary.tenant_id,
            "total": summary.total,
            "counts_by_type": dict(summary.counts_by_type),
            "superseded_count": summary.superseded_count,
            "recent": [
                {
                    "segment_type": segment.segment_type.value,
                    "created_at": segment.created_at.isoformat() if segment.created_at else None,
                    "excerpt": segment.text[:DIGEST_EXCERPT_CHARS],
                }
                for segment in recent
            ],
        }

    async def summarize(self, tenant_id: str) -> TenantKnowledgeSummary:
        summary = self.counts(tenant_id)
        summary.digest = template_digest(summary)
        if self.digest_writer is None or summary.total == 0:
            return summary

        payload = self.build_digest_input(summary)
        try:
            written = await self.digest_writer(payload)
        except Exception as exc:
            logger.warning(
                "digest_writer_failed",
                extra={"tenant_id": tenant_id, "error": exc.__class__.__name__},
            )
            return summary
        if isinstance(written, str) and written.strip():
            summary.digest = written.strip()
        return summary
