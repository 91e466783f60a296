"""Caller-facing access endpoints.

Lets a client find out what the current user may do, for UI gating and
pre-flight checks. These endpoints need authentication but no permission.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from packages.auth.middleware import get_current_user
from packages.auth.models import AuthenticatedUser
from packages.authz.engine import PermissionEvaluator
from packages.authz.gate import permission_context
from packages.authz.models import Permission, Role, RoleValidationError, ROUTE_ROLES

router = APIRouter(tags=["Access"])


class MyPermissionsResponse(BaseModel):
    email: str | None
    role: Role | None
    display_name: str
    permissions: list[str]
    capabilities: dict[str, bool]
    routes: list[str]


class AccessCheckResponse(BaseModel):
    allowed: bool
    mode: Literal["any", "all"]
    permissions: list[str]
    role: Role | None


def get_evaluator(request: Request) -> PermissionEvaluator:
    return request.app.state.evaluator


@router.get("/me/permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    user: AuthenticatedUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> MyPermissionsResponse:
    """Role, permissions, capability flags and reachable pages of the caller."""
    role = await evaluator.resolve_role(user.subject_id)
    context = permission_context(evaluator.registry, role)

    return MyPermissionsResponse(
        email=user.email,
        role=context.role,
        display_name=context.display_name,
        permissions=sorted(context.permissions),
        capabilities={c.value: held for c, held in context.capabilities.items()},
        routes=[r for r in ROUTE_ROLES if evaluator.registry.can_access_route(role, r)],
    )


@router.get("/authz/check", response_model=AccessCheckResponse)
async def check_access(
    permission: list[str] = Query(default=[]),
    mode: Literal["any", "all"] = "any",
    user: AuthenticatedUser = Depends(get_current_user),
    evaluator: PermissionEvaluator = Depends(get_evaluator),
) -> AccessCheckResponse:
    """Check one or more permissions for the caller.

    mode=any (default) needs at least one; mode=all needs every one.
    """
    valid = {p.value for p in Permission}
    unknown = [p for p in permission if p not in valid]
    if unknown:
        raise RoleValidationError(f"Unknown permission: {', '.join(unknown)}")

    if mode == "all":
        allowed = await evaluator.identity_has_all_permissions(user.subject_id, permission)
    else:
        allowed = await evaluator.identity_has_any_permission(user.subject_id, permission)

    return AccessCheckResponse(
        allowed=allowed,
        mode=mode,
        permissions=permission,
        role=await evaluator.resolve_role(user.subject_id),
    )
