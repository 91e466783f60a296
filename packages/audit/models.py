"""Audit data models.

Immutable records of who did what, to which resource, and whether it
succeeded.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuditAction(str, Enum):
    """Auditable actions.

    Naming convention: {category}.{verb}
    """

    # Authentication events
    LOGIN = "auth.login"
    LOGOUT = "auth.logout"
    LOGIN_FAILED = "auth.login_failed"

    # User management events
    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    ROLE_ASSIGN = "role.assign"
    ROLE_REMOVE = "role.remove"

    # Applicant events
    APPLICANT_VIEW = "applicant.view"
    APPLICANT_CREATE = "applicant.create"
    APPLICANT_UPDATE = "applicant.update"
    APPLICANT_DELETE = "applicant.delete"
    APPLICANT_STATUS_CHANGE = "applicant.status_change"

    # Document events
    DOCUMENT_VIEW = "document.view"
    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_DOWNLOAD = "document.download"
    DOCUMENT_DELETE = "document.delete"
    DOCUMENT_SIGN = "document.sign"
    DOCUMENT_SHARE = "document.share"

    # Communication events
    EMAIL_SEND = "email.send"
    EMAIL_VIEW = "email.view"
    NOTIFICATION_SEND = "notification.send"

    # Onboarding events
    ONBOARDING_START = "onboarding.start"
    ONBOARDING_UPDATE = "onboarding.update"
    ONBOARDING_COMPLETE = "onboarding.complete"
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_COMPLETE = "task.complete"

    # Integration events
    INTEGRATION_CONNECT = "integration.connect"
    INTEGRATION_DISCONNECT = "integration.disconnect"
    INTEGRATION_SYNC = "integration.sync"

    # Report events
    REPORT_VIEW = "report.view"
    REPORT_EXPORT = "report.export"

    # Settings events
    SETTINGS_UPDATE = "settings.update"
    SECURITY_UPDATE = "security.update"

    # Data events
    DATA_EXPORT = "data.export"
    DATA_IMPORT = "data.import"
    DATA_DELETE = "data.delete"

    # Authorization events
    ACCESS_DENIED = "access.denied"

    @property
    def category(self) -> str:
        return self.value.split(".", 1)[0]


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditActor(BaseModel):
    """The identity an audit entry is attributed to."""

    actor_id: str = Field(description="Who performed the action")
    email: str | None = Field(default=None, description="Actor email")
    role: str | None = Field(default=None, description="Actor role at the time")


class AuditFields(BaseModel):
    """Caller-supplied parts of an audit entry.

    The logger adds identity, timestamp and outcome. `actor` may be left
    unset when the logger is bound to a request identity.
    """

    action: AuditAction
    actor: AuditActor | None = None
    severity: AuditSeverity | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    resource_name: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditEntry(BaseModel):
    """A single immutable audit record.

    `failure_reason` is present exactly when the outcome is a failure.
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    entry_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this entry"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When this event occurred (UTC)"
    )

    # Actor information
    actor_id: str = Field(description="Who performed the action")
    actor_email: str | None = None
    actor_role: str | None = None

    # Event details
    action: AuditAction = Field(description="What was done")
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)

    # Resource
    resource_type: str | None = None
    resource_id: str | None = None
    resource_name: str | None = None

    # Outcome
    outcome: AuditOutcome = Field(default=AuditOutcome.SUCCESS)
    failure_reason: str | None = None

    # Payload
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific structured data"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Request context: ip_address, user_agent, session_id, request_id"
    )

    @model_validator(mode="after")
    def check_failure_reason(self) -> "AuditEntry":
        if self.outcome == AuditOutcome.FAILURE and not self.failure_reason:
            raise ValueError("failure entries require a failure_reason")
        if self.outcome == AuditOutcome.SUCCESS and self.failure_reason is not None:
            raise ValueError("success entries cannot carry a failure_reason")
        return self

    @property
    def success(self) -> bool:
        return self.outcome == AuditOutcome.SUCCESS


class AuditQuery(BaseModel):
    """Query parameters for audit log search."""

    actor_id: str | None = None
    actor_email: str | None = Field(
        default=None,
        description="Case-insensitive substring match"
    )
    actions: list[AuditAction] | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    severity: AuditSeverity | None = None
    outcome: AuditOutcome | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    limit: int = Field(default=50, ge=1, le=10000)
    offset: int = Field(default=0, ge=0)

    def matches(self, entry: AuditEntry) -> bool:
        """Check an entry against every filter that is set."""
        if self.actor_id and entry.actor_id != self.actor_id:
            return False
        if self.actor_email and (
            not entry.actor_email
            or self.actor_email.lower() not in entry.actor_email.lower()
        ):
            return False
        if self.actions and entry.action not in self.actions:
            return False
        if self.resource_type and entry.resource_type != self.resource_type:
            return False
        if self.resource_id and entry.resource_id != self.resource_id:
            return False
        if self.severity and entry.severity != self.severity:
            return False
        if self.outcome and entry.outcome != self.outcome:
            return False
        if self.start_time and entry.timestamp < self.start_time:
            return False
        if self.end_time and entry.timestamp > self.end_time:
            return False
        return True


class AuditPage(BaseModel):
    """One page of query results, newest first."""

    entries: list[AuditEntry]
    total: int = Field(description="Matches before pagination")
    limit: int
    offset: int
