"""User role endpoints.

GET lists active role assignments, POST assigns or removes one. Both
actions of POST share the user:assign_roles gate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, ValidationError

from packages.auth.middleware import get_current_user, request_metadata
from packages.auth.models import AuthenticatedUser
from packages.authz.admin import RoleAdministration
from packages.authz.engine import require_permission
from packages.authz.models import (
    Permission,
    Role,
    AuthzDecision,
    RoleStoreError,
    RoleValidationError,
)

router = APIRouter(prefix="/users", tags=["Roles"])

ROLE_ACTIONS = ("assign", "remove")


# =============================================================================
# Request/Response Models
# =============================================================================


class RoleMutationRequest(BaseModel):
    """Body of POST /users/roles.

    Fields are optional here so that missing ones produce a 400 with a
    specific message instead of a schema error.
    """

    email: str | None = Field(default=None, description="Subject email")
    role: str | None = Field(default=None, description="Role to assign")
    action: str | None = Field(default=None, description="'assign' or 'remove'")


class RoleAssignmentResponse(BaseModel):
    email: str
    role: Role
    assigned_by: str | None = None
    updated_at: datetime


class RoleListResponse(BaseModel):
    roles: list[RoleAssignmentResponse]


class RoleMutationResponse(BaseModel):
    success: Literal[True] = True
    message: str


def get_role_admin(request: Request) -> RoleAdministration:
    return request.app.state.role_admin


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/roles", response_model=RoleListResponse)
async def list_user_roles(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    decision: AuthzDecision = Depends(require_permission(Permission.USER_VIEW)),
    admin: RoleAdministration = Depends(get_role_admin),
) -> RoleListResponse:
    """List every user that currently holds a role.

    Requires USER_VIEW permission.
    """
    assignments = await admin.list_user_roles(
        user.subject_id, metadata=request_metadata(request)
    )
    return RoleListResponse(
        roles=[
            RoleAssignmentResponse(
                email=a.subject_id,
                role=a.role,
                assigned_by=a.assigned_by,
                updated_at=a.updated_at,
            )
            for a in assignments
        ]
    )


async def read_mutation_body(request: Request) -> RoleMutationRequest:
    """Parse the POST body. Any malformed body is a 400, never a schema 422."""
    try:
        payload = await request.json()
    except ValueError:
        raise RoleValidationError("Request body must be a JSON object")

    if not isinstance(payload, dict):
        raise RoleValidationError("Request body must be a JSON object")

    try:
        return RoleMutationRequest.model_validate(payload)
    except ValidationError as e:
        field = ".".join(str(part) for part in e.errors()[0]["loc"])
        raise RoleValidationError(f"Invalid field: {field} must be a string")


@router.post(
    "/roles",
    response_model=RoleMutationResponse,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {
                "application/json": {"schema": RoleMutationRequest.model_json_schema()}
            },
        }
    },
)
async def mutate_user_role(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    decision: AuthzDecision = Depends(require_permission(Permission.USER_ASSIGN_ROLES)),
    admin: RoleAdministration = Depends(get_role_admin),
) -> RoleMutationResponse:
    """Assign or remove a user's role.

    Requires USER_ASSIGN_ROLES permission for both actions. The body is read
    only after the permission check, so unauthorized callers get a 403 no
    matter what they send.
    """
    body = await read_mutation_body(request)

    if not body.email or not body.action:
        raise RoleValidationError("Missing required fields: email and action")

    if body.action not in ROLE_ACTIONS:
        raise RoleValidationError(
            f"Invalid action: {body.action}. Must be 'assign' or 'remove'"
        )

    metadata = request_metadata(request)

    if body.action == "assign":
        if not body.role:
            raise RoleValidationError("Role is required for assign action")
        if not admin.registry.is_valid_role(body.role):
            raise RoleValidationError(f"Invalid role: {body.role}")

        ok = await admin.assign_role(
            body.email, body.role, user.subject_id, metadata=metadata
        )
        message = f"Role {body.role} assigned to {body.email}"
    else:
        ok = await admin.remove_role(body.email, user.subject_id, metadata=metadata)
        message = f"Role removed from {body.email}"

    if not ok:
        raise RoleStoreError("Failed to update user role")

    return RoleMutationResponse(message=message)
