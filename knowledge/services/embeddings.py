"""
Embedding provider client.

Wraps an OpenAI-compatible ``/embeddings`` endpoint: batching, bounded retries
with backoff, a circuit breaker, and typed failures.
"""

from __future__ import annotations

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from typing import Optional, List, Sequence

import httpx

import knowledge.config as config
from knowledge.errors import (
    AuthFailedError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
    InvalidInputError,
    OperationCancelledError,
    ProviderUnavailableError,
    RateLimitedError,
)

logger = config.logger

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


@dataclass
class BatchOutcome:
    """Result of one provider call: vectors on success, the error otherwise."""

    start: int
    texts: List[str]
    vectors: Optional[List[List[float]]] = None
    error: Optional[EmbeddingProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _error_for_status(status_code: int) -> EmbeddingProviderError:
    detail = f"status {status_code}"
    if status_code == 429:
        return RateLimitedError(detail, status_code=status_code)
    if status_code in AUTH_STATUS_CODES:
        return AuthFailedError(detail, status_code=status_code)
    if status_code >= 500:
        return ProviderUnavailableError(detail, status_code=status_code)
    return InvalidInputError(detail, status_code=status_code)


def _check_cancelled(cancel_event) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("embedding cancelled before provider call")


class EmbeddingClient:
    """Async client for the configured embedding model."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        batch_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        jitter_seconds: Optional[float] = None,
        circuit_breaker: Optional[EmbeddingCircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.model = model or config.EMBEDDING_MODEL
        self.base_url = (base_url or config.EMBEDDING_BASE_URL).rstrip("/")
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.timeout_seconds = timeout_seconds or config.EMBEDDING_TIMEOUT_SECONDS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.EMBEDDING_RETRY_MAX)
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else config.EMBEDDING_RETRY_BACKOFF_SECONDS
        )
        self.jitter_seconds = (
            jitter_seconds if jitter_seconds is not None else config.EMBEDDING_RETRY_JITTER_SECONDS
        )
        self.circuit_breaker = circuit_breaker or EmbeddingCircuitBreaker(
            failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
            cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Embedding HTTP client closed")

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_seconds * (2 ** attempt)
        jitter = random.uniform(0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        await asyncio.sleep(base + jitter)

    def _parse_response(self, response: httpx.Response, expected: int) -> List[List[float]]:
        try:
            items = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(value) for value in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise EmbeddingProviderError("malformed embedding response") from exc
        if len(vectors) != expected:
            raise EmbeddingProviderError(
                f"embedding response returned {len(vectors)} vectors for {expected} inputs"
            )
        dims = {len(vector) for vector in vectors}
        if len(dims) > 1:
            raise EmbeddingProviderError("embedding response mixed vector dimensions")
        return vectors

    async def _embed_batch(self, texts: Sequence[str], cancel_event=None) -> List[List[float]]:
        client = self._get_client()
        last_error: Optional[EmbeddingProviderError] = None
        for attempt in range(self.max_attempts):
            _check_cancelled(cancel_event)
            if self.circuit_breaker.is_open():
                raise ProviderUnavailableError("circuit breaker open")
            try:
                response = await client.post(
                    "/embeddings",
                    json={"model": self.model, "input": list(texts)},
                )
            except httpx.TimeoutException as exc:
                last_error = EmbeddingTimeoutError(f"timeout: {exc.__class__.__name__}")
            except httpx.RequestError as exc:
                last_error = ProviderUnavailableError(f"request error: {exc.__class__.__name__}")
            else:
                if response.status_code < 400:
                    vectors = self._parse_response(response, len(texts))
                    self.circuit_breaker.record_success()
                    return vectors
                last_error = _error_for_status(response.status_code)
                if not last_error.transient:
                    self.circuit_breaker.record_failure(str(last_error))
                    logger.warning(
                        "embedding_request_rejected",
                        extra={"status_code": response.status_code, "batch_size": len(texts)},
                    )
                    raise last_error

            self.circuit_breaker.record_failure(str(last_error))
            if attempt + 1 >= self.max_attempts:
                break
            logger.info(
                "embedding_retry",
                extra={"attempt": attempt + 1, "error": str(last_error), "batch_size": len(texts)},
            )
            await self._sleep_backoff(attempt)

        logger.warning(
            "embedding_retries_exhausted",
            extra={"attempts": self.max_attempts, "error": str(last_error)},
        )
        raise last_error

    def _batches(self, texts: Sequence[str]) -> List[tuple[int, List[str]]]:
        return [
            (start, list(texts[start:start + self.batch_size]))
            for start in range(0, len(texts), self.batch_size)
        ]

    async def embed_batches(self, texts: Sequence[str], cancel_event=None) -> List[BatchOutcome]:
        """
        Embed texts in provider-sized batches issued concurrently.

        Transient failures that exhaust their retries come back as failed
        outcomes so callers can keep the batches that succeeded. Auth and
        invalid-input failures raise immediately.
        """
        batches = self._batches(texts)
        if not batches:
            return []
        results = await asyncio.gather(
            *(self._embed_batch(batch, cancel_event) for _, batch in batches),
            return_exceptions=True,
        )
        outcomes: List[BatchOutcome] = []
        for (start, batch), result in zip(batches, results):
            if isinstance(result, BaseException):
                if isinstance(result, EmbeddingProviderError) and result.transient:
                    outcomes.append(BatchOutcome(start=start, texts=batch, error=result))
                    continue
                raise result
            outcomes.append(BatchOutcome(start=start, texts=batch, vectors=result))
        return outcomes

    async def embed(self, texts: Sequence[str], cancel_event=None) -> List[List[float]]:
        """Embed texts, same order and length as the input; any failure raises."""
        outcomes = await self.embed_batches(texts, cancel_event)
        vectors: List[List[float]] = []
        for outcome in outcomes:
            if outcome.error is not None:
                raise outcome.error
            vectors.extend(outcome.vectors)
        return vectors

    async def embed_one(self, text: str, cancel_event=None) -> List[float]:
        vectors = await self.embed([text], cancel_event)
        return vectors[0]
