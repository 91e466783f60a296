"""Authorization data models.

Defines roles, permissions, capabilities and the per-role permission grants.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Roles a user can hold. At most one per user."""

    ADMIN = "admin"
    MENTOR = "mentor"
    TEAM_LEAD = "team_lead"
    INTERN = "intern"
    STAFF = "staff"


class Permission(str, Enum):
    """Granular permissions.

    Naming convention: {resource}:{action}
    """

    # Applicant permissions
    APPLICANT_VIEW = "applicant:view"
    APPLICANT_CREATE = "applicant:create"
    APPLICANT_UPDATE = "applicant:update"
    APPLICANT_DELETE = "applicant:delete"
    APPLICANT_VIEW_SENSITIVE = "applicant:view_sensitive"

    # Document permissions
    DOCUMENT_VIEW = "document:view"
    DOCUMENT_CREATE = "document:create"
    DOCUMENT_UPDATE = "document:update"
    DOCUMENT_DELETE = "document:delete"
    DOCUMENT_SIGN = "document:sign"

    # Communication permissions
    COMMUNICATION_VIEW = "communication:view"
    COMMUNICATION_CREATE = "communication:create"
    COMMUNICATION_DELETE = "communication:delete"

    # Onboarding permissions
    ONBOARDING_VIEW = "onboarding:view"
    ONBOARDING_CREATE = "onboarding:create"
    ONBOARDING_UPDATE = "onboarding:update"
    ONBOARDING_DELETE = "onboarding:delete"

    # Report permissions
    REPORT_VIEW = "report:view"
    REPORT_CREATE = "report:create"
    REPORT_EXPORT = "report:export"

    # Settings permissions
    SETTINGS_VIEW = "settings:view"
    SETTINGS_UPDATE = "settings:update"

    # User management permissions
    USER_VIEW = "user:view"
    USER_CREATE = "user:create"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_ASSIGN_ROLES = "user:assign_roles"

    # Integration permissions
    INTEGRATION_VIEW = "integration:view"
    INTEGRATION_MANAGE = "integration:manage"

    # Audit permissions
    AUDIT_VIEW = "audit:view"
    AUDIT_EXPORT = "audit:export"


class Capability(str, Enum):
    """Coarse feature flags shown to users, each backed by a permission set."""

    VIEW_ALL_DATA = "can_view_all_data"
    EDIT_ALL_DATA = "can_edit_all_data"
    DELETE_DATA = "can_delete_data"
    MANAGE_USERS = "can_manage_users"
    VIEW_REPORTS = "can_view_reports"
    EXPORT_DATA = "can_export_data"
    MANAGE_ONBOARDING = "can_manage_onboarding"
    MANAGE_APPLICANTS = "can_manage_applicants"
    SEND_COMMUNICATIONS = "can_send_communications"
    UPLOAD_DOCUMENTS = "can_upload_documents"


CAPABILITY_PERMISSIONS: dict[Capability, frozenset[Permission]] = {
    Capability.VIEW_ALL_DATA: frozenset({
        Permission.APPLICANT_VIEW, Permission.APPLICANT_VIEW_SENSITIVE,
        Permission.DOCUMENT_VIEW, Permission.COMMUNICATION_VIEW,
        Permission.ONBOARDING_VIEW, Permission.REPORT_VIEW,
        Permission.SETTINGS_VIEW, Permission.USER_VIEW,
        Permission.INTEGRATION_VIEW, Permission.AUDIT_VIEW,
    }),
    Capability.EDIT_ALL_DATA: frozenset({
        Permission.APPLICANT_UPDATE, Permission.DOCUMENT_UPDATE,
        Permission.DOCUMENT_SIGN, Permission.ONBOARDING_UPDATE,
        Permission.SETTINGS_UPDATE, Permission.INTEGRATION_MANAGE,
    }),
    Capability.DELETE_DATA: frozenset({
        Permission.APPLICANT_DELETE, Permission.DOCUMENT_DELETE,
        Permission.COMMUNICATION_DELETE, Permission.ONBOARDING_DELETE,
        Permission.USER_DELETE,
    }),
    Capability.MANAGE_USERS: frozenset({
        Permission.USER_VIEW, Permission.USER_CREATE,
        Permission.USER_UPDATE, Permission.USER_ASSIGN_ROLES,
    }),
    Capability.VIEW_REPORTS: frozenset({
        Permission.REPORT_VIEW, Permission.REPORT_CREATE,
    }),
    Capability.EXPORT_DATA: frozenset({
        Permission.REPORT_EXPORT, Permission.AUDIT_EXPORT,
    }),
    Capability.MANAGE_ONBOARDING: frozenset({
        Permission.ONBOARDING_VIEW, Permission.ONBOARDING_CREATE,
        Permission.ONBOARDING_UPDATE,
    }),
    Capability.MANAGE_APPLICANTS: frozenset({
        Permission.APPLICANT_VIEW, Permission.APPLICANT_CREATE,
        Permission.APPLICANT_UPDATE,
    }),
    Capability.SEND_COMMUNICATIONS: frozenset({
        Permission.COMMUNICATION_VIEW, Permission.COMMUNICATION_CREATE,
    }),
    Capability.UPLOAD_DOCUMENTS: frozenset({
        Permission.DOCUMENT_VIEW, Permission.DOCUMENT_CREATE,
    }),
}


_FIELD_CAPABILITIES = {
    Capability.VIEW_REPORTS, Capability.EXPORT_DATA,
    Capability.MANAGE_ONBOARDING, Capability.MANAGE_APPLICANTS,
    Capability.SEND_COMMUNICATIONS, Capability.UPLOAD_DOCUMENTS,
}

# Capabilities each role holds; anything not listed is False.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.MENTOR: frozenset(_FIELD_CAPABILITIES),
    Role.TEAM_LEAD: frozenset(_FIELD_CAPABILITIES),
    Role.INTERN: frozenset(),
    Role.STAFF: frozenset({Capability.UPLOAD_DOCUMENTS}),
}


def compose_grants(
    role_capabilities: dict[Role, frozenset[Capability]],
) -> dict[Role, frozenset[Permission]]:
    """Expand each role's capabilities into its flat permission grant."""
    grants = {}
    for role in Role:
        permissions: set[Permission] = set()
        for capability in role_capabilities.get(role, frozenset()):
            permissions.update(CAPABILITY_PERMISSIONS[capability])
        grants[role] = frozenset(permissions)
    return grants


# Computed once at import; immutable afterwards.
ROLE_GRANTS: dict[Role, frozenset[Permission]] = compose_grants(ROLE_CAPABILITIES)

ROLE_DISPLAY_NAMES: dict[Role, str] = {
    Role.ADMIN: "Administrator",
    Role.MENTOR: "Mentor",
    Role.TEAM_LEAD: "Team Lead",
    Role.INTERN: "Intern",
    Role.STAFF: "Staff",
}

# Application pages and the roles allowed to open them.
ROUTE_ROLES: dict[str, frozenset[Role]] = {
    "/": frozenset(Role),
    "/onboarding": frozenset(Role),
    "/documents": frozenset(Role),
    "/communications": frozenset({Role.ADMIN, Role.MENTOR, Role.TEAM_LEAD}),
    "/applicants": frozenset({Role.ADMIN, Role.MENTOR, Role.TEAM_LEAD}),
    "/team": frozenset({Role.ADMIN, Role.MENTOR, Role.TEAM_LEAD, Role.STAFF}),
    "/reports": frozenset({Role.ADMIN, Role.MENTOR, Role.TEAM_LEAD}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRoleAssignment(BaseModel):
    """The current role of a subject.

    A `role` of None is the "no role" state left behind by a removal; the
    record itself is kept.
    """

    subject_id: str = Field(description="Stable subject identifier (email)")
    role: Role | None = Field(default=None, description="Current role, None if removed")
    assigned_by: str | None = Field(default=None, description="Who made the last change")
    assigned_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AuthzDecision(BaseModel):
    """Result of an authorization decision."""

    allowed: bool = Field(description="Whether access is allowed")
    permission: str = Field(description="Permission that was checked")
    role: Role | None = Field(default=None, description="Role the decision was made for")
    reason: str = Field(default="", description="Explanation of decision")
    required_role: Role | None = Field(
        default=None,
        description="A role that would grant the permission (when denied)"
    )


class AuthorizationError(Exception):
    """Base class for authorization failures."""

    def __init__(self, message: str, code: str = "authorization_failed"):
        self.message = message
        self.code = code
        super().__init__(message)


class PermissionDeniedError(AuthorizationError):
    """Raised when a resolved identity lacks a required permission."""

    def __init__(self, permission: str, role: Role | None):
        self.permission = permission
        self.role = role
        role_name = role.value if role else "none"
        super().__init__(
            f"You lack access to this action (requires {permission}). "
            f"Your current role: {role_name}",
            "permission_denied",
        )


class RoleValidationError(AuthorizationError):
    """Raised when a role mutation request is malformed."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class RoleStoreError(AuthorizationError):
    """Raised when the role store cannot be read."""

    def __init__(self, message: str = "Role store unavailable"):
        super().__init__(message, "store_failure")
