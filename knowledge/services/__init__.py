from knowledge.services.knowledge_service import (
    KnowledgeService,
    KnowledgeSettings,
    TenantLockRegistry,
)

__all__ = [
    "KnowledgeService",
    "KnowledgeSettings",
    "TenantLockRegistry",
]
