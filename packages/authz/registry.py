"""Role registry.

Read-only mapping from roles to their permission grants, built once at
startup. Lookups are total: anything that is not a known role is granted
nothing.
"""

import logging
from typing import Any, Mapping

from packages.authz.models import (
    Capability,
    Permission,
    Role,
    AuthzDecision,
    CAPABILITY_PERMISSIONS,
    ROLE_CAPABILITIES,
    ROLE_DISPLAY_NAMES,
    ROLE_GRANTS,
    ROUTE_ROLES,
)

logger = logging.getLogger(__name__)

_EMPTY: frozenset[Permission] = frozenset()


class RoleRegistry:
    """Static role-to-permission registry.

    Usage:
        registry = RoleRegistry()
        registry.permissions_for(Role.STAFF)
        registry.is_valid_role("mentor")  # True
    """

    def __init__(
        self,
        grants: Mapping[Role, frozenset[Permission]] | None = None,
        capabilities: Mapping[Role, frozenset[Capability]] | None = None,
    ):
        self._grants: dict[Role, frozenset[Permission]] = {
            role: frozenset(perms) for role, perms in (grants or ROLE_GRANTS).items()
        }
        self._capabilities = dict(capabilities or ROLE_CAPABILITIES)

        logger.info(
            "RoleRegistry initialized: %d roles, %d permissions",
            len(self._grants),
            len(Permission),
        )

    @staticmethod
    def parse_role(candidate: Any) -> Role | None:
        """Coerce a role or role string to Role, None if it is not one."""
        if isinstance(candidate, Role):
            return candidate
        if isinstance(candidate, str):
            try:
                return Role(candidate)
            except ValueError:
                return None
        return None

    def is_valid_role(self, candidate: Any) -> bool:
        return self.parse_role(candidate) in self._grants

    @property
    def roles(self) -> list[Role]:
        return list(self._grants)

    def permissions_for(self, role: Role | str | None) -> frozenset[Permission]:
        """Get the permission grant of a role. Unknown roles get an empty set."""
        parsed = self.parse_role(role)
        if parsed is None:
            return _EMPTY
        return self._grants.get(parsed, _EMPTY)

    def roles_with_permission(self, permission: Permission | str) -> list[Role]:
        """Roles whose grant contains the permission, in declaration order."""
        return [role for role, perms in self._grants.items() if permission in perms]

    def display_name(self, role: Role | str | None) -> str:
        parsed = self.parse_role(role)
        if parsed is None:
            return str(role) if role else "No role"
        return ROLE_DISPLAY_NAMES.get(parsed, parsed.value)

    def capabilities_for(self, role: Role | str | None) -> dict[Capability, bool]:
        """Every capability flag for a role."""
        held = self._capabilities.get(self.parse_role(role), frozenset())
        return {capability: capability in held for capability in Capability}

    def has_capability(self, role: Role | str | None, capability: Capability) -> bool:
        return self.capabilities_for(role)[capability]

    def capability_permissions(self, capability: Capability) -> frozenset[Permission]:
        return CAPABILITY_PERMISSIONS[capability]

    def can_access_route(self, role: Role | str | None, route: str) -> bool:
        """Check the page table. Unlisted routes are closed to everyone."""
        parsed = self.parse_role(role)
        if parsed is None:
            return False
        return parsed in ROUTE_ROLES.get(route, frozenset())

    def can_perform_action(
        self, role: Role | str | None, resource: str, action: str
    ) -> AuthzDecision:
        """Check `{resource}:{action}` and explain a denial."""
        permission = f"{resource}:{action}"
        parsed = self.parse_role(role)

        if permission in self.permissions_for(parsed):
            return AuthzDecision(
                allowed=True,
                permission=permission,
                role=parsed,
                reason=f"Granted by role: {self.display_name(parsed)}",
            )

        # Suggest the narrowest role that grants it
        granting = self.roles_with_permission(permission)
        required = min(granting, key=lambda r: len(self._grants[r])) if granting else None
        return AuthzDecision(
            allowed=False,
            permission=permission,
            role=parsed,
            reason=f"Permission denied. You need {permission} permission.",
            required_role=required,
        )
