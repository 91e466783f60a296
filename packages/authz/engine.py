"""Permission evaluator.

Decides whether a role, or an identity through its assigned role, holds a
permission. Evaluation is a set lookup against the role registry; the cache
exists to spare repeated role store round-trips.

Cache keys are scoped to one identity:
- "{subject_id}|role"          the resolved role
- "{subject_id}|{permission}"  a decision
`invalidate(subject_id)` drops both kinds.
"""

import logging
from typing import Iterable

from packages.authz.models import (
    Permission,
    Role,
    AuthzDecision,
    PermissionDeniedError,
)
from packages.authz.registry import RoleRegistry
from packages.authz.store import RoleStore
from packages.core.cache import TTLCache

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("onboard.security")

ROLE_KEY = "role"
NO_ROLE = ""


def cache_key(subject_id: str, suffix: str) -> str:
    return f"{subject_id}|{suffix}"


def as_permissions(
    permissions: Permission | str | Iterable[Permission | str],
) -> list[Permission | str]:
    """Treat a single permission as a one-item list."""
    if isinstance(permissions, str):
        return [permissions]
    return list(permissions)


class PermissionEvaluator:
    """Role and identity permission checks.

    Usage:
        evaluator = PermissionEvaluator(registry, role_store, cache)

        evaluator.has_permission(Role.MENTOR, Permission.REPORT_VIEW)

        decision = await evaluator.check("a@example.com", Permission.USER_VIEW)
        if decision.allowed:
            # Proceed
    """

    def __init__(
        self,
        registry: RoleRegistry,
        role_store: RoleStore,
        cache: TTLCache,
        decision_ttl_seconds: float | None = None,
    ):
        self.registry = registry
        self.role_store = role_store
        self.cache = cache
        self.decision_ttl = decision_ttl_seconds
        # Bumped by invalidate(). A lookup that started under an older
        # generation must not write its result back into the cache.
        self._generations: dict[str, int] = {}

    # =========================================================================
    # Role checks (pure)
    # =========================================================================

    def has_permission(self, role: Role | str | None, permission: Permission | str) -> bool:
        """True iff the permission is in the role's grant."""
        return permission in self.registry.permissions_for(role)

    def has_any_permission(
        self,
        role: Role | str | None,
        permissions: Permission | str | Iterable[Permission | str],
    ) -> bool:
        """True iff at least one permission is granted. Empty input is False."""
        granted = self.registry.permissions_for(role)
        return any(p in granted for p in as_permissions(permissions))

    def has_all_permissions(
        self,
        role: Role | str | None,
        permissions: Permission | str | Iterable[Permission | str],
    ) -> bool:
        """True iff every permission is granted.

        Empty input is True for a known role. A role-less caller is denied
        everything, including the empty requirement.
        """
        if not self.registry.is_valid_role(role):
            return False
        granted = self.registry.permissions_for(role)
        return all(p in granted for p in as_permissions(permissions))

    # =========================================================================
    # Identity checks (cached)
    # =========================================================================

    def generation(self, subject_id: str) -> int:
        return self._generations.get(subject_id, 0)

    async def _lookup_role(self, subject_id: str) -> str:
        role = await self.role_store.find_role_assignment(subject_id)
        return role.value if role else NO_ROLE

    async def resolve_role(self, subject_id: str | None) -> Role | None:
        """Get the identity's current role, None if it has none.

        Store failures fail closed: the identity is treated as role-less and
        the result is not cached.
        """
        if not subject_id:
            return None

        key = cache_key(subject_id, ROLE_KEY)
        value = self.cache.get(key)
        if value is None:
            generation = self.generation(subject_id)
            try:
                value = await self._lookup_role(subject_id)
            except Exception:
                logger.exception(
                    "Role lookup failed for %s, treating as role-less", subject_id
                )
                return None

            if self.generation(subject_id) == generation:
                self.cache.set(key, value, self.decision_ttl)

        return self.registry.parse_role(value)

    async def check(
        self, subject_id: str | None, permission: Permission | str
    ) -> AuthzDecision:
        """Decide whether an identity holds a permission."""
        if isinstance(permission, Permission):
            permission = permission.value
        generation = self.generation(subject_id) if subject_id else 0
        role = await self.resolve_role(subject_id)

        if role is None:
            return AuthzDecision(
                allowed=False,
                permission=permission,
                reason="No role assigned",
            )

        key = cache_key(subject_id, permission)
        allowed = self.cache.get(key)
        if allowed is None:
            allowed = self.has_permission(role, permission)
            if self.generation(subject_id) == generation:
                self.cache.set(key, allowed, self.decision_ttl)

        if allowed:
            logger.debug(
                "Access ALLOWED: subject=%s role=%s permission=%s",
                subject_id, role.value, permission
            )
            return AuthzDecision(
                allowed=True,
                permission=permission,
                role=role,
                reason=f"Granted by role: {self.registry.display_name(role)}",
            )

        logger.info(
            "Access DENIED: subject=%s role=%s permission=%s",
            subject_id, role.value, permission
        )
        return AuthzDecision(
            allowed=False,
            permission=permission,
            role=role,
            reason=f"Role {role.value} does not grant {permission}",
        )

    async def identity_has_permission(
        self, subject_id: str | None, permission: Permission | str
    ) -> bool:
        return (await self.check(subject_id, permission)).allowed

    async def identity_has_any_permission(
        self,
        subject_id: str | None,
        permissions: Permission | str | Iterable[Permission | str],
    ) -> bool:
        for permission in as_permissions(permissions):
            if await self.identity_has_permission(subject_id, permission):
                return True
        return False

    async def identity_has_all_permissions(
        self,
        subject_id: str | None,
        permissions: Permission | str | Iterable[Permission | str],
    ) -> bool:
        if await self.resolve_role(subject_id) is None:
            return False
        for permission in as_permissions(permissions):
            if not await self.identity_has_permission(subject_id, permission):
                return False
        return True

    def invalidate(self, subject_id: str) -> int:
        """Drop every cached role and decision for an identity.

        Lookups for the identity still in flight will not cache their results.
        """
        self._generations[subject_id] = self.generation(subject_id) + 1
        removed = self.cache.delete_prefix(cache_key(subject_id, ""))
        logger.debug("Invalidated %d cache entries for %s", removed, subject_id)
        return removed


# FastAPI dependency helpers
def require_permission(permission: Permission):
    """FastAPI dependency to require a permission.

    Reads the evaluator and audit logger from `app.state`. Denials are
    recorded as `access.denied` audit entries.

    Usage:
        @router.get("/users/roles")
        async def list_roles(
            decision: AuthzDecision = Depends(require_permission(Permission.USER_VIEW))
        ):
            pass
    """
    return require_any_permission([permission])


def require_any_permission(permissions: list[Permission]):
    """FastAPI dependency to require any of the permissions."""
    from fastapi import Depends, Request

    from packages.audit.models import AuditAction, AuditActor, AuditFields
    from packages.auth.middleware import get_current_user, request_metadata
    from packages.auth.models import AuthenticatedUser

    async def check(
        request: Request, user: AuthenticatedUser = Depends(get_current_user)
    ) -> AuthzDecision:
        evaluator: PermissionEvaluator = request.app.state.evaluator

        decision = None
        for permission in permissions:
            decision = await evaluator.check(user.subject_id, permission)
            if decision.allowed:
                return decision

        role = decision.role if decision else None
        required = ",".join(p.value for p in permissions)
        security_logger.warning(
            "Permission denied: subject=%s role=%s required=%s path=%s",
            user.subject_id, role.value if role else None, required, request.url.path
        )

        await request.app.state.audit_logger.log_failure(
            AuditFields(
                action=AuditAction.ACCESS_DENIED,
                actor=AuditActor(
                    actor_id=user.subject_id,
                    email=user.email,
                    role=role.value if role else None,
                ),
                resource_type="endpoint",
                resource_id=request.url.path,
                details={"required": [p.value for p in permissions]},
                metadata=request_metadata(request),
            ),
            f"Missing permission: {required}",
        )

        raise PermissionDeniedError(required, role)

    return check
