"""
Shared configuration for the tenant knowledge engine.
"""

from __future__ import annotations

import logging
import os

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger("tenant_knowledge")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "none"} else "none"
    if db_effective == "sqlite" and vector_effective == "pgvector":
        vector_effective = "none"
    return db_effective, vector_effective


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/knowledge.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Embedding settings
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
EMBEDDING_BASE_URL = os.environ.get("EMBEDDING_BASE_URL", "https://api.openai.com/v1").rstrip("/")
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 1536)
EMBEDDING_BATCH_SIZE = _get_int("EMBEDDING_BATCH_SIZE", 96)

# Provider retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 3)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)

# Segmentation
SEGMENT_MAX_CHARS = _get_int("SEGMENT_MAX_CHARS", 1500)
SEGMENT_OVERLAP_CHARS = _get_int("SEGMENT_OVERLAP_CHARS", 0)
WEBSITE_MAX_CHARS = _get_int("WEBSITE_MAX_CHARS", 12000)

# Conflict detection & retrieval defaults (per-tenant policies override these)
CONFLICT_THRESHOLD = _get_float("CONFLICT_THRESHOLD", 0.85)
RETRIEVAL_THRESHOLD = _get_float("RETRIEVAL_THRESHOLD", 0.75)
RETRIEVAL_TOP_K = _get_int("RETRIEVAL_TOP_K", 5)
SUMMARY_SAMPLE_SIZE = _get_int("SUMMARY_SAMPLE_SIZE", 10)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("KNOWLEDGE_MAX_RESULT_LIMIT", 50)
MAX_QUERY_LENGTH = _get_int("KNOWLEDGE_MAX_QUERY_LENGTH", 4000)
MAX_INGEST_TEXT_LENGTH = _get_int("KNOWLEDGE_MAX_INGEST_TEXT_LENGTH", 2_000_000)
MAX_TENANT_ID_LENGTH = _get_int("KNOWLEDGE_MAX_TENANT_ID_LENGTH", 100)
MAX_METADATA_BYTES = _get_int("KNOWLEDGE_MAX_METADATA_BYTES", 20000)

SERVICE_NAME = "tenant-knowledge"
SERVICE_VERSION = "0.1.0"


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "none"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'none'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        errors.append("VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if not 0.0 < CONFLICT_THRESHOLD <= 1.0:
        errors.append("CONFLICT_THRESHOLD must be in (0, 1]")
    if not 0.0 <= RETRIEVAL_THRESHOLD <= 1.0:
        errors.append("RETRIEVAL_THRESHOLD must be in [0, 1]")
    if SEGMENT_OVERLAP_CHARS < 0 or SEGMENT_OVERLAP_CHARS >= SEGMENT_MAX_CHARS:
        errors.append("SEGMENT_OVERLAP_CHARS must be >= 0 and smaller than SEGMENT_MAX_CHARS")
    if EMBEDDING_BATCH_SIZE <= 0:
        errors.append("EMBEDDING_BATCH_SIZE must be positive")

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from knowledge.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
