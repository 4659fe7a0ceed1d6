"""
Canonical audit event type strings.
"""

EVENT_SEGMENT_SUPERSEDED = "knowledge.segment_superseded"
EVENT_SEGMENT_DELETED = "knowledge.segment_deleted"
EVENT_TENANT_PURGED = "knowledge.tenant_purged"

__all__ = [
    "EVENT_SEGMENT_SUPERSEDED",
    "EVENT_SEGMENT_DELETED",
    "EVENT_TENANT_PURGED",
]
