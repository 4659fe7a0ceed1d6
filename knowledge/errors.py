"""
Shared error types for the knowledge services.
"""

from __future__ import annotations

from typing import Optional


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class EmptyInputError(ValidationIssue):
    """Raised when ingestion input yields nothing to store."""

    def __init__(self, message: str = "nothing to ingest", field: str = "text"):
        super().__init__(message, field=field, error_type="empty")


class DimensionMismatchError(ValidationIssue):
    """Raised when a vector does not match the tenant's established dimension."""

    def __init__(self, expected: int, actual: int, tenant_id: Optional[str] = None):
        super().__init__(
            f"embedding dimension {actual} does not match expected {expected}",
            field="embedding",
            error_type="dimension_mismatch",
            data={"expected": expected, "actual": actual, "tenant_id": tenant_id},
        )
        self.expected = expected
        self.actual = actual
        self.tenant_id = tenant_id


class ConflictStateError(RuntimeError):
    """Raised when a segment is already superseded by a different segment."""

    def __init__(self, segment_id: str, superseded_by: str, attempted_by: str):
        super().__init__(
            f"segment {segment_id} already superseded by {superseded_by}, not {attempted_by}"
        )
        self.segment_id = segment_id
        self.superseded_by = superseded_by
        self.attempted_by = attempted_by


class OperationCancelledError(RuntimeError):
    """Raised when a caller's cancel signal stops an operation."""

    def __init__(self, message: str = "operation cancelled", report=None):
        super().__init__(message)
        self.report = report


class EmbeddingProviderError(RuntimeError):
    """Raised when the embedding provider fails."""

    transient = False

    def __init__(self, message: str = "embedding provider unavailable", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(EmbeddingProviderError):
    transient = True


class EmbeddingTimeoutError(EmbeddingProviderError):
    transient = True


class ProviderUnavailableError(EmbeddingProviderError):
    """5xx responses, network errors and an open circuit breaker."""

    transient = True


class AuthFailedError(EmbeddingProviderError):
    transient = False


class InvalidInputError(EmbeddingProviderError):
    transient = False
