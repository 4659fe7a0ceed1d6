import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

import asyncio
import hashlib
import json
import math

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from knowledge.models import Base
from knowledge.services.embeddings import EmbeddingCircuitBreaker, EmbeddingClient
from knowledge.services.knowledge_service import KnowledgeService, KnowledgeSettings
from knowledge.services.sql_store import SqlKnowledgeStore
from knowledge.services.store import InMemoryKnowledgeStore
from knowledge.types import KnowledgeSegment

DIM = 64


def vec(*values: float) -> list[float]:
    """A DIM-length vector whose leading components are ``values``."""
    padded = list(values) + [0.0] * (DIM - len(values))
    return padded[:DIM]


def at_angle(cos: float, axis: int = 1) -> list[float]:
    """Unit vector with cosine ``cos`` to vec(1.0), leaning on ``axis``."""
    values = [0.0] * DIM
    values[0] = cos
    values[axis] = math.sqrt(1.0 - cos * cos)
    return values


def hashed_vector(text: str) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    digest = digest + hashlib.sha256(digest).digest()
    return [(byte - 127.5) / 127.5 for byte in digest[:DIM]]


def run(coro):
    return asyncio.run(coro)


class FakeEmbeddingProvider:
    """OpenAI-style /embeddings endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.vectors: dict[str, list[float]] = {}
        self.calls: list[list[str]] = []
        self.headers: list[httpx.Headers] = []
        self.statuses: list[int] = []
        self.fail_texts: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        inputs = payload["input"]
        self.calls.append(list(inputs))
        self.headers.append(request.headers)
        if self.statuses:
            return httpx.Response(self.statuses.pop(0), json={"error": {"message": "scripted"}})
        for text in inputs:
            if text in self.fail_texts:
                return httpx.Response(self.fail_texts[text], json={"error": {"message": "scripted"}})
        data = [
            {"object": "embedding", "index": index, "embedding": self.vector_for(text)}
            for index, text in enumerate(inputs)
        ]
        return httpx.Response(200, json={"object": "list", "data": data, "model": payload["model"]})

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        return hashed_vector(text)

    @property
    def call_count(self) -> int:
        return len(self.calls)


def make_client(provider: FakeEmbeddingProvider, **overrides) -> EmbeddingClient:
    options = {
        "api_key": "test-key",
        "model": "test-embedding",
        "base_url": "https://embeddings.test/v1",
        "batch_size": 96,
        "timeout_seconds": 5.0,
        "max_attempts": 3,
        "backoff_seconds": 0.0,
        "jitter_seconds": 0.0,
        "circuit_breaker": EmbeddingCircuitBreaker(failure_threshold=100, cooldown_seconds=60),
        "transport": httpx.MockTransport(provider.handler),
    }
    options.update(overrides)
    return EmbeddingClient(**options)


def make_segment(text: str, segment_type: str = "document", embedding=None, tenant_id: str = "tenant-a"):
    return KnowledgeSegment(
        tenant_id=tenant_id,
        text=text,
        segment_type=segment_type,
        embedding=embedding if embedding is not None else hashed_vector(text),
    )


@pytest.fixture
def provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedder(provider):
    return make_client(provider)


@pytest.fixture
def sql_session_factory(tmp_path):
    db_path = tmp_path / "knowledge.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    try:
        yield SessionLocal
    finally:
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, sql_session_factory):
    if request.param == "memory":
        return InMemoryKnowledgeStore()
    return SqlKnowledgeStore(sql_session_factory)


@pytest.fixture
def memory_store():
    return InMemoryKnowledgeStore(dimension=DIM)


@pytest.fixture
def service(memory_store, embedder):
    return KnowledgeService(memory_store, embedder, KnowledgeSettings())


@pytest.fixture
def sql_service(sql_session_factory, embedder):
    return KnowledgeService(
        SqlKnowledgeStore(sql_session_factory, dimension=DIM),
        embedder,
        KnowledgeSettings(),
    )
