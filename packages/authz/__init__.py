"""Onboard Access Authorization Package.

Role-based access control: a fixed role-to-permission registry, a cached
permission evaluator, and audited role administration.

Usage:
    from packages.authz import PermissionEvaluator, Permission, RoleRegistry

    evaluator = PermissionEvaluator(RoleRegistry(), role_store, cache)

    # Check permission
    if await evaluator.identity_has_permission(email, Permission.USER_VIEW):
        # Allowed
        pass
"""

from packages.authz.models import (
    Capability,
    Permission,
    Role,
    AuthzDecision,
    UserRoleAssignment,
    AuthorizationError,
    PermissionDeniedError,
    RoleStoreError,
    RoleValidationError,
)
from packages.authz.registry import RoleRegistry
from packages.authz.engine import (
    PermissionEvaluator,
    require_any_permission,
    require_permission,
)
from packages.authz.admin import RoleAdministration
from packages.authz.store import (
    RoleStore,
    FileRoleStore,
    InMemoryRoleStore,
    get_role_store,
)

__all__ = [
    "Capability",
    "Permission",
    "Role",
    "AuthzDecision",
    "UserRoleAssignment",
    "AuthorizationError",
    "PermissionDeniedError",
    "RoleStoreError",
    "RoleValidationError",
    "RoleRegistry",
    "PermissionEvaluator",
    "require_any_permission",
    "require_permission",
    "RoleAdministration",
    "RoleStore",
    "FileRoleStore",
    "InMemoryRoleStore",
    "get_role_store",
]
