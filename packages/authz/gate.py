"""Permission-gated rendering.

Server-side counterpart of UI permission gates: decide between content and
fallback for the current user's role.

Usage:
    context = permission_context(registry, Role.STAFF)

    gate = PermissionGate([Permission.REPORT_VIEW, Permission.REPORT_EXPORT], fallback="")
    body = gate.render(context, report_panel)

    can_delete("applicant").allows(context)  # False
"""

from typing import Any, Iterable

from pydantic import BaseModel, Field

from packages.authz.models import Capability, Permission, Role
from packages.authz.registry import RoleRegistry


class PermissionContext(BaseModel):
    """What the current user may do, resolved once per request."""

    role: Role | None = None
    display_name: str = "No role"
    permissions: frozenset[str] = Field(default_factory=frozenset)
    capabilities: dict[Capability, bool] = Field(default_factory=dict)

    def has_permission(self, permission: Permission | str) -> bool:
        return permission in self.permissions

    def has_any_permission(self, permissions: Iterable[Permission | str]) -> bool:
        return any(p in self.permissions for p in permissions)

    def has_all_permissions(self, permissions: Iterable[Permission | str]) -> bool:
        if self.role is None:
            return False
        return all(p in self.permissions for p in permissions)


def permission_context(registry: RoleRegistry, role: Role | str | None) -> PermissionContext:
    """Resolve a role into a PermissionContext."""
    parsed = registry.parse_role(role)
    return PermissionContext(
        role=parsed,
        display_name=registry.display_name(parsed),
        permissions=frozenset(p.value for p in registry.permissions_for(parsed)),
        capabilities=registry.capabilities_for(parsed),
    )


class PermissionGate:
    """Renders content only when the context holds the permission(s).

    Args:
        permission: One permission, a list of them, or None (always render)
        fallback: Rendered instead of the content when access is denied
        require_all: With a list, require every permission instead of any
    """

    def __init__(
        self,
        permission: Permission | str | Iterable[Permission | str] | None = None,
        fallback: Any = None,
        require_all: bool = False,
    ):
        self.permission = permission
        self.fallback = fallback
        self.require_all = require_all

    def allows(self, context: PermissionContext) -> bool:
        if self.permission is None:
            return True

        if isinstance(self.permission, str):
            return context.has_permission(self.permission)

        # An empty list denies under "any" and grants a known role under "all"
        permissions = list(self.permission)
        if self.require_all:
            return context.has_all_permissions(permissions)
        return context.has_any_permission(permissions)

    def render(self, context: PermissionContext, content: Any) -> Any:
        """Return content (called if it is callable) or the fallback."""
        chosen = content if self.allows(context) else self.fallback
        if callable(chosen):
            return chosen()
        return chosen


def can_view(resource: str, fallback: Any = None) -> PermissionGate:
    return PermissionGate(f"{resource}:view", fallback)


def can_create(resource: str, fallback: Any = None) -> PermissionGate:
    return PermissionGate(f"{resource}:create", fallback)


def can_update(resource: str, fallback: Any = None) -> PermissionGate:
    return PermissionGate(f"{resource}:update", fallback)


def can_delete(resource: str, fallback: Any = None) -> PermissionGate:
    return PermissionGate(f"{resource}:delete", fallback)
