"""
Shared validation helpers for knowledge services.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from knowledge.config import MAX_METADATA_BYTES, MAX_RESULT_LIMIT
from knowledge.errors import ValidationIssue

METADATA_SCALAR_TYPES = (str, int, float, bool, type(None))


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_text_type(value: Any, field: str, max_len: int) -> None:
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int = MAX_RESULT_LIMIT) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_unit_interval(value: float, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationIssue(f"{field} must be a number", field=field, error_type="invalid_type")
    if value < 0.0 or value > 1.0:
        raise ValidationIssue(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")


def validate_metadata(metadata: Optional[dict], field: str = "metadata") -> None:
    """Metadata is an open map of string keys to scalar values."""
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be a mapping", field=field, error_type="invalid_type")
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise ValidationIssue(f"{field} keys must be strings", field=field, error_type="invalid_type")
        if not isinstance(value, METADATA_SCALAR_TYPES):
            raise ValidationIssue(
                f"{field}.{key} must be a scalar value",
                field=field,
                error_type="invalid_type",
            )
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_vector(vector, field: str = "embedding") -> list[float]:
    if not isinstance(vector, (list, tuple)) or not vector:
        raise ValidationIssue(f"{field} must be a non-empty list of floats", field=field, error_type="invalid_type")
    try:
        return [float(value) for value in vector]
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must contain only numbers", field=field, error_type="invalid_type") from exc
