"""
Audit logging helpers (DB-only, metadata-only).
"""

from __future__ import annotations

from typing import Any, Optional

from knowledge.context import ALLOWED_ACTOR_TYPES
from knowledge.models import KnowledgeAuditEvent, utcnow

FORBIDDEN_METADATA_KEYS = {
    "text",
    "content",
    "embedding",
    "segment_text",
    "raw_text",
    "document_body",
}
MAX_METADATA_STRING_LENGTH = 500
MAX_TARGET_ID_LENGTH = 200


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def _metadata_key_forbidden(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized in FORBIDDEN_METADATA_KEYS:
        return True
    for token in FORBIDDEN_METADATA_KEYS:
        if token in normalized.split("_"):
            return True
    return False


def _validate_metadata_value(value: Any, path: str = "") -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError("metadata keys must be strings")
            if _metadata_key_forbidden(key):
                raise ValueError(f"metadata key '{key}' is not allowed")
            next_path = f"{path}.{key}" if path else key
            _validate_metadata_value(item, next_path)
        return
    if isinstance(value, list):
        for item in value:
            _validate_metadata_value(item, path)
        return
    if isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
        raise ValueError(f"metadata value too long at '{path or 'value'}'")


def _coerce_target_ids(target_ids: Any) -> list[str]:
    if not isinstance(target_ids, (list, tuple)):
        raise ValueError("target_ids must be a list")
    coerced: list[str] = []
    for item in target_ids:
        if not isinstance(item, str):
            raise ValueError("target_ids must contain strings")
        if len(item) > MAX_TARGET_ID_LENGTH:
            raise ValueError("target_id value too long")
        coerced.append(item)
    return coerced


def log_event(
    db,
    *,
    tenant_id: str,
    event_type: str,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
    target_ids: list[str],
    count_affected: Optional[int] = None,
    reason: Optional[str] = None,
    request_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> KnowledgeAuditEvent:
    """
    Append an audit event to the session. The caller owns the commit, so the
    event lands in the same transaction as the change it describes.
    """
    if not event_type or not isinstance(event_type, str):
        raise ValueError("event_type must be a non-empty string")
    if actor_type not in ALLOWED_ACTOR_TYPES:
        raise ValueError("actor_type must be one of: " + "|".join(sorted(ALLOWED_ACTOR_TYPES)))

    safe_target_ids = _coerce_target_ids(target_ids)

    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a dict")
        _validate_metadata_value(metadata)

    event = KnowledgeAuditEvent(
        created_at=utcnow(),
        tenant_id=tenant_id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        target_ids=safe_target_ids,
        count_affected=count_affected if count_affected is not None else len(safe_target_ids),
        reason=reason,
        request_id=request_id,
        metadata_=metadata,
    )
    db.add(event)
    return event
