"""Audit API endpoints.

Read access to the audit log: filtered search, export, per-user activity
and recent security events.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel

from packages.audit.logger import AuditLogger
from packages.audit.models import (
    AuditAction,
    AuditActor,
    AuditOutcome,
    AuditPage,
    AuditQuery,
    AuditSeverity,
)
from packages.audit.reports import (
    REPORT_LIMIT,
    SecurityEvents,
    UserActivity,
    export_entries,
    security_events,
    user_activity,
)
from packages.audit.storage import AuditStore
from packages.auth.middleware import get_current_user, request_metadata
from packages.auth.models import AuthenticatedUser
from packages.authz.engine import require_permission
from packages.authz.models import Permission, AuthzDecision, RoleValidationError

router = APIRouter(prefix="/audit", tags=["Audit"])

EXPORT_MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


# =============================================================================
# Dependencies
# =============================================================================


async def get_audit_store(request: Request) -> AuditStore:
    """Audit store with every queued entry delivered."""
    audit_logger: AuditLogger = request.app.state.audit_logger
    await audit_logger.flush()
    return request.app.state.audit_store


def build_query(
    actor_id: str | None = Query(default=None, description="Filter by actor"),
    actor_email: str | None = Query(default=None, description="Email substring"),
    action: list[AuditAction] | None = Query(default=None, description="Filter by action"),
    resource_type: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    severity: AuditSeverity | None = Query(default=None),
    outcome: AuditOutcome | None = Query(default=None),
    start_time: datetime | None = Query(default=None),
    end_time: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=1000, description="Max entries to return"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
) -> AuditQuery:
    return AuditQuery(
        actor_id=actor_id,
        actor_email=actor_email,
        actions=action,
        resource_type=resource_type,
        resource_id=resource_id,
        severity=severity,
        outcome=outcome,
        start_time=start_time,
        end_time=end_time,
        limit=limit,
        offset=offset,
    )


class AuditLogsResponse(BaseModel):
    page: AuditPage
    has_more: bool


# =============================================================================
# Audit Endpoints
# =============================================================================


@router.get("/logs", response_model=AuditLogsResponse)
async def query_audit_logs(
    query: AuditQuery = Depends(build_query),
    decision: AuthzDecision = Depends(require_permission(Permission.AUDIT_VIEW)),
    store: AuditStore = Depends(get_audit_store),
) -> AuditLogsResponse:
    """Search audit entries, newest first.

    Requires AUDIT_VIEW permission.
    """
    page = await store.query(query)
    return AuditLogsResponse(
        page=page,
        has_more=page.offset + len(page.entries) < page.total,
    )


@router.get("/export")
async def export_audit_logs(
    request: Request,
    format: str = Query(default="json", description="json or csv"),
    query: AuditQuery = Depends(build_query),
    user: AuthenticatedUser = Depends(get_current_user),
    decision: AuthzDecision = Depends(require_permission(Permission.AUDIT_EXPORT)),
    store: AuditStore = Depends(get_audit_store),
) -> Response:
    """Download matching entries as a JSON or CSV file.

    Requires AUDIT_EXPORT permission. The export itself is audited.
    """
    if format not in EXPORT_MEDIA_TYPES:
        raise RoleValidationError(f"Invalid format: {format}. Must be 'json' or 'csv'")

    page = await store.query(query.model_copy(update={"limit": REPORT_LIMIT, "offset": 0}))
    data, filename = export_entries(page.entries, format)

    audit: AuditLogger = request.app.state.audit_logger
    await audit.bind(
        AuditActor(
            actor_id=user.subject_id,
            email=user.email,
            role=decision.role.value if decision.role else None,
        ),
        request_metadata(request),
    ).log_action(
        AuditAction.DATA_EXPORT,
        resource_type="audit_log",
        details={"format": format, "count": len(page.entries)},
    )

    return Response(
        content=data,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/activity/{user_id}", response_model=UserActivity)
async def get_user_activity(
    user_id: str,
    days: int = Query(default=30, ge=1, le=365),
    decision: AuthzDecision = Depends(require_permission(Permission.AUDIT_VIEW)),
    store: AuditStore = Depends(get_audit_store),
) -> UserActivity:
    """Summarize one user's audited actions.

    Requires AUDIT_VIEW permission.
    """
    return await user_activity(store, user_id.strip().lower(), days=days)


@router.get("/security-events", response_model=SecurityEvents)
async def get_security_events(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    decision: AuthzDecision = Depends(require_permission(Permission.AUDIT_VIEW)),
    store: AuditStore = Depends(get_audit_store),
) -> SecurityEvents:
    """Logins, role changes, exports and critical events in the window.

    Requires AUDIT_VIEW permission.
    """
    return await security_events(store, hours=hours)


@router.get("/actions", response_model=list[str])
async def list_actions() -> list[str]:
    """List all auditable actions."""
    return [a.value for a in AuditAction]
