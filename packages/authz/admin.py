"""Role administration.

Assigns, removes and lists user roles on behalf of an acting identity.
The actor's own role is resolved through the permission evaluator, every
mutation is audited, and the subject's cached decisions are dropped as
soon as the store has changed.
"""

import logging
from typing import Any

from packages.audit.logger import AuditLogger
from packages.audit.models import AuditAction, AuditActor, AuditFields
from packages.auth.models import AuthenticationError
from packages.authz.engine import PermissionEvaluator
from packages.authz.models import (
    Permission,
    Role,
    PermissionDeniedError,
    RoleStoreError,
    RoleValidationError,
    UserRoleAssignment,
)
from packages.authz.registry import RoleRegistry
from packages.authz.store import RoleStore

logger = logging.getLogger(__name__)

BOOTSTRAP_ACTOR = "system:bootstrap"


def normalize_subject(subject_id: str | None) -> str:
    return (subject_id or "").strip().lower()


class RoleAdministration:
    """Role mutations and listing, gated by the actor's permissions.

    Usage:
        admin = RoleAdministration(registry, evaluator, role_store, audit_logger)
        ok = await admin.assign_role("new@example.com", "intern", "lead@example.com")
    """

    def __init__(
        self,
        registry: RoleRegistry,
        evaluator: PermissionEvaluator,
        role_store: RoleStore,
        audit_logger: AuditLogger,
    ):
        self.registry = registry
        self.evaluator = evaluator
        self.role_store = role_store
        self.audit = audit_logger

    def _actor(self, acting_id: str, role: Role | None) -> AuditActor:
        return AuditActor(
            actor_id=acting_id,
            email=acting_id if "@" in acting_id else None,
            role=role.value if role else None,
        )

    async def _authorize(
        self,
        acting_id: str | None,
        permission: Permission,
        action: AuditAction,
        subject_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditActor:
        """Check the actor holds `permission`. Denials are audited."""
        if not acting_id:
            raise AuthenticationError("Unauthorized", code="missing_identity")

        decision = await self.evaluator.check(acting_id, permission)
        actor = self._actor(acting_id, decision.role)
        if decision.allowed:
            return actor

        await self.audit.log_failure(
            AuditFields(
                action=action,
                actor=actor,
                resource_type="user",
                resource_id=subject_id,
                details={"required_permission": permission.value},
                metadata=metadata or {},
            ),
            f"Missing permission: {permission.value}",
        )
        raise PermissionDeniedError(permission.value, decision.role)

    async def assign_role(
        self,
        subject_id: str,
        role: Role | str | None,
        acting_id: str | None,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Give `subject_id` exactly `role`, replacing any previous role.

        Returns:
            True on success, False if the role store write failed

        Raises:
            AuthenticationError: If there is no acting identity
            PermissionDeniedError: If the actor lacks user:assign_roles
            RoleValidationError: If the subject or role is invalid
        """
        actor = await self._authorize(
            acting_id, Permission.USER_ASSIGN_ROLES, AuditAction.ROLE_ASSIGN,
            normalize_subject(subject_id) or None, metadata,
        )

        subject_id = normalize_subject(subject_id)
        if not subject_id:
            raise RoleValidationError("Email is required")
        if role is None or role == "":
            raise RoleValidationError("Role is required for assign action")
        new_role = self.registry.parse_role(role)
        if new_role is None or not self.registry.is_valid_role(new_role):
            raise RoleValidationError(f"Invalid role: {role}")

        async def apply(subject_id: str, role: Role) -> Role | None:
            previous = await self.role_store.find_role_assignment(subject_id)
            await self.role_store.upsert_role_assignment(subject_id, role, actor.actor_id)
            self.evaluator.invalidate(subject_id)
            return previous

        def derive(args, kwargs, *result) -> dict[str, Any]:
            details = {"new_role": new_role.value}
            if result:
                details["previous_role"] = result[0].value if result[0] else None
            return {
                "resource_type": "user",
                "resource_id": args[0],
                "resource_name": args[0],
                "details": details,
            }

        guarded = self.audit.with_audit(
            AuditAction.ROLE_ASSIGN, apply, derive, actor=actor, metadata=metadata
        )
        try:
            await guarded(subject_id, new_role)
        except Exception:
            logger.exception("Failed to assign role %s to %s", new_role.value, subject_id)
            return False

        logger.info(
            "Role %s assigned to %s by %s", new_role.value, subject_id, actor.actor_id
        )
        return True

    async def remove_role(
        self,
        subject_id: str,
        acting_id: str | None,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Move `subject_id` to the no-role state.

        Gated by user:assign_roles, like assignment.
        """
        actor = await self._authorize(
            acting_id, Permission.USER_ASSIGN_ROLES, AuditAction.ROLE_REMOVE,
            normalize_subject(subject_id) or None, metadata,
        )

        subject_id = normalize_subject(subject_id)
        if not subject_id:
            raise RoleValidationError("Email is required")

        async def apply(subject_id: str) -> Role | None:
            previous = await self.role_store.find_role_assignment(subject_id)
            await self.role_store.clear_role_assignment(subject_id, actor.actor_id)
            self.evaluator.invalidate(subject_id)
            return previous

        def derive(args, kwargs, *result) -> dict[str, Any]:
            details = {}
            if result:
                details["previous_role"] = result[0].value if result[0] else None
            return {
                "resource_type": "user",
                "resource_id": args[0],
                "resource_name": args[0],
                "details": details,
            }

        guarded = self.audit.with_audit(
            AuditAction.ROLE_REMOVE, apply, derive, actor=actor, metadata=metadata
        )
        try:
            await guarded(subject_id)
        except Exception:
            logger.exception("Failed to remove role from %s", subject_id)
            return False

        logger.info("Role removed from %s by %s", subject_id, actor.actor_id)
        return True

    async def list_user_roles(
        self,
        acting_id: str | None,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> list[UserRoleAssignment]:
        """Active role assignments ordered by subject.

        Raises:
            RoleStoreError: If the role store cannot be read
        """
        await self._authorize(
            acting_id, Permission.USER_VIEW, AuditAction.ACCESS_DENIED,
            metadata=metadata,
        )

        try:
            assignments = await self.role_store.list_assignments()
        except Exception as e:
            logger.exception("Failed to list role assignments")
            raise RoleStoreError("Failed to fetch user roles") from e

        return sorted(
            (a for a in assignments if a.role is not None),
            key=lambda a: a.subject_id,
        )

    async def bootstrap_admin(self, subject_id: str | None) -> bool:
        """Make `subject_id` an admin if it has never had a role record.

        A record left by an earlier removal is respected. Returns True if
        the admin was seeded.
        """
        subject_id = normalize_subject(subject_id)
        if not subject_id:
            return False

        if await self.role_store.get_assignment(subject_id) is not None:
            logger.debug("Bootstrap admin %s already has a role record", subject_id)
            return False

        await self.role_store.upsert_role_assignment(subject_id, Role.ADMIN, BOOTSTRAP_ACTOR)
        self.evaluator.invalidate(subject_id)

        await self.audit.log_success(
            AuditFields(
                action=AuditAction.ROLE_ASSIGN,
                actor=AuditActor(actor_id=BOOTSTRAP_ACTOR),
                resource_type="user",
                resource_id=subject_id,
                resource_name=subject_id,
                details={"new_role": Role.ADMIN.value, "bootstrap": True},
            )
        )
        logger.info("Bootstrap admin seeded: %s", subject_id)
        return True
