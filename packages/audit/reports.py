"""Audit reports: per-user activity, recent security events, exports."""

import csv
import io
import json
from datetime import datetime, timedelta, timezone
from typing import Iterable

from pydantic import BaseModel, Field

from packages.audit.models import (
    AuditAction,
    AuditEntry,
    AuditOutcome,
    AuditQuery,
    AuditSeverity,
)
from packages.audit.storage import AuditStore

REPORT_LIMIT = 10000
RECENT_LIMIT = 10

EXPORT_FORMATS = ("json", "csv")

CSV_HEADERS = [
    "Timestamp",
    "User Email",
    "Role",
    "Action",
    "Resource Type",
    "Resource ID",
    "Resource Name",
    "Success",
    "Severity",
    "Error Message",
    "IP Address",
]


class UserActivity(BaseModel):
    """Summary of one user's audited actions."""

    user_id: str
    days: int
    total_actions: int = 0
    actions_by_category: dict[str, int] = Field(default_factory=dict)
    recent_actions: list[AuditEntry] = Field(default_factory=list)
    failed_actions: list[AuditEntry] = Field(default_factory=list)


class SecurityEvents(BaseModel):
    """Security-relevant entries over a recent window."""

    hours: int
    login_attempts: list[AuditEntry] = Field(default_factory=list)
    role_changes: list[AuditEntry] = Field(default_factory=list)
    data_exports: list[AuditEntry] = Field(default_factory=list)
    critical_events: list[AuditEntry] = Field(default_factory=list)


def _since(**delta: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


async def user_activity(store: AuditStore, user_id: str, days: int = 30) -> UserActivity:
    """Summarize what a user did over the last `days` days."""
    page = await store.query(
        AuditQuery(actor_id=user_id, start_time=_since(days=days), limit=REPORT_LIMIT)
    )

    by_category: dict[str, int] = {}
    failed = []
    for entry in page.entries:
        category = entry.action.category
        by_category[category] = by_category.get(category, 0) + 1
        if entry.outcome == AuditOutcome.FAILURE:
            failed.append(entry)

    return UserActivity(
        user_id=user_id,
        days=days,
        total_actions=page.total,
        actions_by_category=by_category,
        recent_actions=page.entries[:RECENT_LIMIT],
        failed_actions=failed[:RECENT_LIMIT],
    )


async def security_events(store: AuditStore, hours: int = 24) -> SecurityEvents:
    """Collect logins, role changes, exports and critical entries."""
    start = _since(hours=hours)

    async def entries(**filters) -> list[AuditEntry]:
        page = await store.query(AuditQuery(start_time=start, limit=REPORT_LIMIT, **filters))
        return page.entries

    return SecurityEvents(
        hours=hours,
        login_attempts=await entries(actions=[AuditAction.LOGIN, AuditAction.LOGIN_FAILED]),
        role_changes=await entries(actions=[AuditAction.ROLE_ASSIGN, AuditAction.ROLE_REMOVE]),
        data_exports=await entries(actions=[AuditAction.DATA_EXPORT, AuditAction.REPORT_EXPORT]),
        critical_events=await entries(severity=AuditSeverity.CRITICAL),
    )


def export_entries(entries: Iterable[AuditEntry], format: str) -> tuple[str, str]:
    """Serialize entries for download.

    Returns:
        Tuple of (data, filename)

    Raises:
        ValueError: If the format is not json or csv
    """
    date = datetime.now(timezone.utc).date().isoformat()

    if format == "json":
        data = json.dumps(
            [entry.model_dump(mode="json") for entry in entries], indent=2
        )
        return data, f"audit-logs-{date}.json"

    if format == "csv":
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for entry in entries:
            writer.writerow([
                entry.timestamp.isoformat(),
                entry.actor_email or "",
                entry.actor_role or "",
                entry.action.value,
                entry.resource_type or "",
                entry.resource_id or "",
                entry.resource_name or "",
                "Yes" if entry.success else "No",
                entry.severity.value,
                entry.failure_reason or "",
                entry.metadata.get("ip_address", ""),
            ])
        return buffer.getvalue(), f"audit-logs-{date}.csv"

    raise ValueError(f"Unsupported export format: {format}")
