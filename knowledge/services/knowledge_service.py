"""
Knowledge service entry points.

Glues segmentation, embedding, conflict resolution, retrieval and summaries
into the operations the API layer calls. Everything the service needs is
passed in at construction; there is no module-level instance.

Writes for one tenant are serialized by a per-tenant lock held around the
conflict check and the insert. The locked section runs in a worker thread so
the event loop keeps serving other tenants.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Optional, List

import knowledge.config as config
from knowledge.context import RequestContext, require_tenant_id_value
from knowledge.errors import (
    DimensionMismatchError,
    EmbeddingProviderError,
    EmptyInputError,
    OperationCancelledError,
    ValidationIssue,
)
from knowledge.services.conflicts import (
    ACTION_DROP,
    ACTION_REDUNDANT,
    ConflictOutcome,
    ConflictResolver,
)
from knowledge.services.embeddings import EmbeddingClient
from knowledge.services.retrieval import RetrievalEngine
from knowledge.services.segmenter import clean_html, format_exchange, segment_text
from knowledge.services.store import KnowledgeStore
from knowledge.services.summarizer import KnowledgeSummarizer
from knowledge.types import (
    IngestionReport,
    KnowledgeSegment,
    RetrievalResult,
    SegmentType,
    SkippedChunk,
    TenantKnowledgePolicy,
    TenantKnowledgeSummary,
    coerce_segment_type,
)
from knowledge.validators import (
    validate_limit,
    validate_metadata,
    validate_required_text,
    validate_text_type,
    validate_unit_interval,
)

logger = config.logger

MAX_SEGMENT_ID_LENGTH = 36
MAX_URL_LENGTH = 2048


@dataclass(frozen=True)
class KnowledgeSettings:
    conflict_threshold: float = 0.85
    retrieval_threshold: float = 0.75
    top_k: int = 5
    segment_max_chars: int = 1500
    segment_overlap: int = 0
    website_max_chars: int = 12000
    max_ingest_length: int = 2_000_000
    max_query_length: int = 4000

    @classmethod
    def from_config(cls) -> "KnowledgeSettings":
        return cls(
            conflict_threshold=config.CONFLICT_THRESHOLD,
            retrieval_threshold=config.RETRIEVAL_THRESHOLD,
            top_k=config.RETRIEVAL_TOP_K,
            segment_max_chars=config.SEGMENT_MAX_CHARS,
            segment_overlap=config.SEGMENT_OVERLAP_CHARS,
            website_max_chars=config.WEBSITE_MAX_CHARS,
            max_ingest_length=config.MAX_INGEST_TEXT_LENGTH,
            max_query_length=config.MAX_QUERY_LENGTH,
        )


class TenantLockRegistry:
    """One lock per tenant, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, tenant_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[tenant_id] = lock
            return lock


def _raise_if_cancelled(cancel_event, report: IngestionReport) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info(
            "knowledge_ingest_cancelled",
            extra={"tenant_id": report.tenant_id, "stored_count": len(report.stored)},
        )
        raise OperationCancelledError("ingestion cancelled", report=report)


def _validate_conflict_threshold(value: float) -> None:
    validate_unit_interval(value, "conflict_threshold")
    if value == 0.0:
        raise ValidationIssue(
            "conflict_threshold must be greater than 0.0",
            field="conflict_threshold",
            error_type="out_of_range",
        )


class KnowledgeService:
    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingClient,
        settings: Optional[KnowledgeSettings] = None,
        summarizer: Optional[KnowledgeSummarizer] = None,
        locks: Optional[TenantLockRegistry] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.settings = settings or KnowledgeSettings()
        self.summarizer = summarizer or KnowledgeSummarizer(store)
        self.locks = locks or TenantLockRegistry()
        self.retrieval = RetrievalEngine(store)
        self.resolver = ConflictResolver(store)

    async def aclose(self) -> None:
        await self.embedder.aclose()

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def tenant_policy(self, tenant_id: str) -> TenantKnowledgePolicy:
        """Effective policy: stored overrides on top of the service defaults."""
        tenant_id = require_tenant_id_value(tenant_id)
        stored = self.store.get_policy(tenant_id)
        defaults = self.settings

        def pick(value, default):
            return default if value is None else value

        return TenantKnowledgePolicy(
            tenant_id=tenant_id,
            conflict_threshold=pick(stored and stored.conflict_threshold, defaults.conflict_threshold),
            retrieval_threshold=pick(stored and stored.retrieval_threshold, defaults.retrieval_threshold),
            top_k=pick(stored and stored.top_k, defaults.top_k),
        )

    def set_tenant_policy(
        self,
        tenant_id: str,
        *,
        conflict_threshold: Optional[float] = None,
        retrieval_threshold: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> TenantKnowledgePolicy:
        tenant_id = require_tenant_id_value(tenant_id)
        if conflict_threshold is not None:
            _validate_conflict_threshold(conflict_threshold)
        if retrieval_threshold is not None:
            validate_unit_interval(retrieval_threshold, "retrieval_threshold")
        if top_k is not None:
            validate_limit(top_k, "top_k", config.MAX_RESULT_LIMIT)
        self.store.set_policy(
            TenantKnowledgePolicy(
                tenant_id=tenant_id,
                conflict_threshold=conflict_threshold,
                retrieval_threshold=retrieval_threshold,
                top_k=top_k,
            )
        )
        logger.info("tenant_policy_updated", extra={"tenant_id": tenant_id})
        return self.tenant_policy(tenant_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _segment(self, text: str) -> List[str]:
        chunks = segment_text(
            text,
            max_chars=self.settings.segment_max_chars,
            overlap=self.settings.segment_overlap,
        )
        if not chunks:
            raise EmptyInputError()
        return chunks

    def _apply_locked(
        self,
        tenant_id: str,
        candidate: KnowledgeSegment,
        threshold: float,
        context: Optional[RequestContext],
    ) -> ConflictOutcome:
        with self.locks.get(tenant_id):
            return self.resolver.apply(tenant_id, candidate, threshold, context)

    @staticmethod
    def _record(report: IngestionReport, index: int, outcome: ConflictOutcome) -> None:
        if outcome.action == ACTION_REDUNDANT:
            report.redundant.append(outcome.redundant_of)
        elif outcome.action == ACTION_DROP:
            report.dropped.append(index)
        else:
            report.stored.append(outcome.segment)
            report.superseded.extend(outcome.superseded)

    async def ingest_text(
        self,
        tenant_id: str,
        text: str,
        segment_type,
        metadata: Optional[dict] = None,
        cancel_event=None,
        context: Optional[RequestContext] = None,
    ) -> IngestionReport:
        """
        Segment, embed and store text for a tenant.

        Chunks whose embedding batch fails after retries, or whose vector has
        the wrong dimension, are reported in ``report.skipped``; everything
        else is stored, superseding or yielding to conflicting knowledge.
        Empty input is a no-op. Auth and invalid-input provider errors raise.
        """
        tenant_id = require_tenant_id_value(tenant_id)
        segment_type = coerce_segment_type(segment_type)
        validate_text_type(text, "text", self.settings.max_ingest_length)
        validate_metadata(metadata)

        report = IngestionReport(tenant_id=tenant_id, segment_type=segment_type)
        try:
            chunks = self._segment(text)
        except EmptyInputError:
            logger.info("knowledge_ingest_empty", extra={"tenant_id": tenant_id})
            return report
        report.chunk_count = len(chunks)

        _raise_if_cancelled(cancel_event, report)
        try:
            outcomes = await self.embedder.embed_batches(chunks, cancel_event)
        except OperationCancelledError as exc:
            raise OperationCancelledError(str(exc), report=report) from exc

        threshold = self.tenant_policy(tenant_id).conflict_threshold
        for batch in outcomes:
            if not batch.ok:
                logger.warning(
                    "embedding_batch_skipped",
                    extra={
                        "tenant_id": tenant_id,
                        "start": batch.start,
                        "count": len(batch.texts),
                        "error": batch.error.__class__.__name__,
                    },
                )
                for offset in range(len(batch.texts)):
                    report.skipped.append(
                        SkippedChunk(batch.start + offset, "embedding_failed", str(batch.error))
                    )
                continue

            for offset, (chunk, vector) in enumerate(zip(batch.texts, batch.vectors)):
                index = batch.start + offset
                _raise_if_cancelled(cancel_event, report)
                candidate = KnowledgeSegment(
                    tenant_id=tenant_id,
                    text=chunk,
                    segment_type=segment_type,
                    embedding=vector,
                    metadata={**(metadata or {}), "chunk_index": index, "chunk_count": len(chunks)},
                )
                try:
                    outcome = await asyncio.to_thread(
                        self._apply_locked, tenant_id, candidate, threshold, context
                    )
                except DimensionMismatchError as exc:
                    logger.warning(
                        "knowledge_dimension_mismatch",
                        extra={"tenant_id": tenant_id, "chunk_index": index, **(exc.data or {})},
                    )
                    report.skipped.append(SkippedChunk(index, "dimension_mismatch", str(exc)))
                    continue
                self._record(report, index, outcome)

        logger.info(
            "knowledge_ingested",
            extra={
                "tenant_id": tenant_id,
                "segment_type": segment_type.value,
                "chunk_count": report.chunk_count,
                "stored_count": len(report.stored),
                "superseded_count": len(report.superseded),
                "redundant_count": len(report.redundant),
                "dropped_count": len(report.dropped),
                "skipped_count": len(report.skipped),
            },
        )
        return report

    async def ingest_website(
        self,
        tenant_id: str,
        html: str,
        url: str,
        metadata: Optional[dict] = None,
        cancel_event=None,
        context: Optional[RequestContext] = None,
    ) -> IngestionReport:
        """Clean a scraped page and ingest it as website knowledge."""
        validate_required_text(url, "url", MAX_URL_LENGTH)
        validate_text_type(html, "html", self.settings.max_ingest_length)
        text = clean_html(html, max_chars=self.settings.website_max_chars)
        return await self.ingest_text(
            tenant_id,
            text,
            SegmentType.website,
            metadata={**(metadata or {}), "url": url.strip()},
            cancel_event=cancel_event,
            context=context,
        )

    async def ingest_conversation(
        self,
        tenant_id: str,
        user_message: str,
        assistant_message: str,
        metadata: Optional[dict] = None,
        cancel_event=None,
        context: Optional[RequestContext] = None,
    ) -> IngestionReport:
        """Store one customer/assistant exchange as conversation knowledge."""
        validate_text_type(user_message, "user_message", self.settings.max_ingest_length)
        validate_text_type(assistant_message, "assistant_message", self.settings.max_ingest_length)
        return await self.ingest_text(
            tenant_id,
            format_exchange(user_message, assistant_message),
            SegmentType.conversation,
            metadata=metadata,
            cancel_event=cancel_event,
            context=context,
        )

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def query(
        self,
        tenant_id: str,
        query_text: str,
        threshold: Optional[float] = None,
        top_k: Optional[int] = None,
        cancel_event=None,
    ) -> List[RetrievalResult]:
        """
        Return the tenant's most relevant active segments for a question.

        Provider failures and dimension mismatches degrade to an empty list
        so the caller can answer without knowledge; storage errors raise.
        """
        tenant_id = require_tenant_id_value(tenant_id)
        validate_required_text(query_text, "query", self.settings.max_query_length)
        policy = self.tenant_policy(tenant_id)
        threshold = policy.retrieval_threshold if threshold is None else threshold
        top_k = policy.top_k if top_k is None else top_k
        validate_unit_interval(threshold, "threshold")
        validate_limit(top_k, "top_k", config.MAX_RESULT_LIMIT)

        try:
            vector = await self.embedder.embed_one(query_text, cancel_event)
        except EmbeddingProviderError as exc:
            logger.warning(
                "query_embedding_failed",
                extra={"tenant_id": tenant_id, "error": exc.__class__.__name__},
            )
            return []

        try:
            ranked = await asyncio.to_thread(self.retrieval.retrieve, tenant_id, vector, threshold, top_k)
        except DimensionMismatchError as exc:
            logger.warning(
                "query_dimension_mismatch",
                extra={"tenant_id": tenant_id, **(exc.data or {})},
            )
            return []

        results = []
        seen = set()
        for segment, score in ranked:
            if segment.content_hash in seen:
                continue
            seen.add(segment.content_hash)
            results.append(
                RetrievalResult(
                    text=segment.text,
                    metadata=dict(segment.metadata),
                    score=score,
                    segment_id=segment.id,
                    segment_type=segment.segment_type,
                )
            )
        logger.info(
            "knowledge_query",
            extra={"tenant_id": tenant_id, "result_count": len(results), "top_k": top_k},
        )
        return results

    async def detect_conflicts(
        self,
        tenant_id: str,
        text: str,
        segment_type,
        threshold: Optional[float] = None,
        cancel_event=None,
    ) -> List[dict]:
        """Report what ingesting ``text`` would do to each chunk, without writing."""
        tenant_id = require_tenant_id_value(tenant_id)
        segment_type = coerce_segment_type(segment_type)
        validate_text_type(text, "text", self.settings.max_ingest_length)
        if threshold is None:
            threshold = self.tenant_policy(tenant_id).conflict_threshold
        _validate_conflict_threshold(threshold)

        chunks = segment_text(
            text,
            max_chars=self.settings.segment_max_chars,
            overlap=self.settings.segment_overlap,
        )
        if not chunks:
            return []
        vectors = await self.embedder.embed(chunks, cancel_event)

        report = []
        for index, (chunk, vector) in enumerate(zip(chunks, vectors)):
            candidate = KnowledgeSegment(
                tenant_id=tenant_id,
                text=chunk,
                segment_type=segment_type,
                embedding=vector,
            )
            decision = await asyncio.to_thread(self.resolver.decide, tenant_id, candidate, threshold)
            report.append({"chunk_index": index, **decision.as_dict()})
        return report

    # ------------------------------------------------------------------
    # Summary & deletion
    # ------------------------------------------------------------------

    async def get_summary(self, tenant_id: str) -> TenantKnowledgeSummary:
        tenant_id = require_tenant_id_value(tenant_id)
        return await self.summarizer.summarize(tenant_id)

    def _locked(self, tenant_id: str, fn, *args):
        with self.locks.get(tenant_id):
            return fn(*args)

    async def delete_memory(
        self,
        tenant_id: str,
        segment_id: str,
        context: Optional[RequestContext] = None,
    ) -> bool:
        tenant_id = require_tenant_id_value(tenant_id)
        validate_required_text(segment_id, "segment_id", MAX_SEGMENT_ID_LENGTH)
        deleted = await asyncio.to_thread(
            self._locked, tenant_id, self.store.delete, tenant_id, segment_id.strip(), context
        )
        logger.info(
            "knowledge_segment_deleted",
            extra={"tenant_id": tenant_id, "segment_id": segment_id, "deleted": deleted},
        )
        return deleted

    async def delete_all_memories(
        self,
        tenant_id: str,
        context: Optional[RequestContext] = None,
    ) -> int:
        tenant_id = require_tenant_id_value(tenant_id)
        count = await asyncio.to_thread(
            self._locked, tenant_id, self.store.delete_all, tenant_id, context
        )
        logger.info("knowledge_tenant_purged", extra={"tenant_id": tenant_id, "count": count})
        return count
