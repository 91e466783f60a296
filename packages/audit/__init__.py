"""Onboard Access Audit Package.

Append-only audit logging of role changes, access denials and other
security-relevant actions.

Features:
- Immutable audit entries with success/failure outcome
- Guarded actions that are audited whether they succeed or raise
- Detached delivery through an asyncio queue
- Activity and security reports, JSON/CSV export

Usage:
    from packages.audit import AuditLogger, AuditAction, AuditActor

    audit = AuditLogger(storage)

    assign = audit.with_audit(
        AuditAction.ROLE_ASSIGN,
        store.upsert_role_assignment,
        lambda args, kwargs, *result: {"resource_type": "user", "resource_id": args[0]},
        actor=AuditActor(actor_id="admin@example.com"),
    )
    await assign("intern@example.com", Role.INTERN)
"""

from packages.audit.models import (
    AuditAction,
    AuditActor,
    AuditEntry,
    AuditFields,
    AuditOutcome,
    AuditPage,
    AuditQuery,
    AuditSeverity,
)
from packages.audit.logger import AuditLogger, BoundAuditLogger
from packages.audit.storage import (
    AuditStore,
    FileAuditStorage,
    InMemoryAuditStorage,
    get_audit_storage,
)

__all__ = [
    "AuditAction",
    "AuditActor",
    "AuditEntry",
    "AuditFields",
    "AuditOutcome",
    "AuditPage",
    "AuditQuery",
    "AuditSeverity",
    "AuditLogger",
    "BoundAuditLogger",
    "AuditStore",
    "FileAuditStorage",
    "InMemoryAuditStorage",
    "get_audit_storage",
]
