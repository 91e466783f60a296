"""HTTP security glue: response headers and error responses.

Maps authentication and authorization exceptions to JSON bodies of the
form {"error": ..., "message": ..., "code": ...}.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from packages.auth.models import AuthenticationError
from packages.authz.models import (
    AuthorizationError,
    PermissionDeniedError,
    RoleStoreError,
    RoleValidationError,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("onboard.security")


# =============================================================================
# Security Headers Middleware
# =============================================================================


async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    # Role and audit data must never be cached by intermediaries
    if request.url.path.startswith(("/users", "/me", "/authz", "/audit")):
        response.headers["Cache-Control"] = "no-store, max-age=0"

    return response


# =============================================================================
# Exception Handlers
# =============================================================================


def error_body(error: str, message: str, code: str) -> dict[str, str]:
    return {"error": error, "message": message, "code": code}


async def authentication_error_handler(
    request: Request, exc: AuthenticationError
) -> JSONResponse:
    security_logger.warning(
        "Unauthenticated request to %s: %s", request.url.path, exc.message
    )
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=error_body("authentication_required", "Unauthorized", exc.code),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def permission_denied_handler(
    request: Request, exc: PermissionDeniedError
) -> JSONResponse:
    content = error_body("permission_denied", exc.message, exc.code)
    content["role"] = exc.role.value if exc.role else None
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=content)


async def validation_error_handler(
    request: Request, exc: RoleValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("validation_error", exc.message, exc.code),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed query strings or bodies get the same 400 shape as role errors."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid request: {field}: {first.get('msg', 'invalid value')}"
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("validation_error", message, "invalid_request"),
    )


async def store_error_handler(
request: Request, exc: RoleStoreError) -> JSONResponse:
    logger.error("Role store failure on %s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("store_failure", f"{exc.message}. Please try again.", exc.code),
    )


async def authorization_error_handler(
    request: Request, exc: AuthorizationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=error_body("authorization_failed", exc.message, exc.code),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on an app."""
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(PermissionDeniedError, permission_denied_handler)
    app.add_exception_handler(RoleValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RoleStoreError, store_error_handler)
    app.add_exception_handler(AuthorizationError, authorization_error_handler)
