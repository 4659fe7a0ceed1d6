"""
Request-scoped context objects for knowledge services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import knowledge.config as config
from knowledge.errors import ValidationIssue

ALLOWED_ACTOR_TYPES = {"user", "org_admin", "system", "integration"}


@dataclass(frozen=True)
class RequestContext:
    actor_type: str = "system"
    actor_id: Optional[str] = None
    request_id: Optional[str] = None
    source: Optional[str] = None


SYSTEM_CONTEXT = RequestContext()


def resolve_actor(context: Optional[RequestContext]) -> tuple[str, Optional[str]]:
    if context is None:
        return SYSTEM_CONTEXT.actor_type, None
    actor_type = context.actor_type if context.actor_type in ALLOWED_ACTOR_TYPES else "system"
    return actor_type, context.actor_id


def require_tenant_id_value(tenant_id: Optional[str]) -> str:
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValidationIssue(
            "tenant_id is required for this operation",
            field="tenant_id",
            error_type="required",
        )
    tenant_id = tenant_id.strip()
    if len(tenant_id) > config.MAX_TENANT_ID_LENGTH:
        raise ValidationIssue(
            f"tenant_id exceeds max length {config.MAX_TENANT_ID_LENGTH}",
            field="tenant_id",
            error_type="max_length",
        )
    return tenant_id


__all__ = [
    "RequestContext",
    "SYSTEM_CONTEXT",
    "resolve_actor",
    "require_tenant_id_value",
]
