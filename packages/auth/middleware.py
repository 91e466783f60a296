"""FastAPI authentication middleware.

Resolves the caller's identity before routing. A request that reaches an
endpoint outside the public paths always has `request.state.user` set;
permission checks run afterwards, in endpoint dependencies.
"""

import logging
from typing import Any, Callable, Iterable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from packages.auth.models import (
    AuthenticatedUser,
    AuthenticationError,
    MissingTokenError,
    TokenExpiredError,
)
from packages.auth.providers.base import AuthProvider

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("onboard.security")

PUBLIC_PATHS = frozenset({"/", "/health"})


def unauthorized_response(exc: AuthenticationError) -> JSONResponse:
    """401 with the flat error body used across the API."""
    if isinstance(exc, TokenExpiredError):
        error, challenge = "token_expired", 'Bearer error="invalid_token"'
    else:
        error, challenge = "authentication_required", "Bearer"

    message = "Unauthorized" if isinstance(exc, MissingTokenError) else exc.message
    return JSONResponse(
        status_code=401,
        content={"error": error, "message": message, "code": exc.code},
        headers={"WWW-Authenticate": challenge},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate every non-public request with one provider.

    Usage:
        provider = get_auth_provider(settings.auth_config)
        app.add_middleware(AuthMiddleware, provider=provider, exclude_prefixes=["/docs"])
    """

    def __init__(
        self,
        app,
        provider: AuthProvider,
        exclude_paths: Iterable[str] = (),
        exclude_prefixes: Iterable[str] = (),
    ):
        super().__init__(app)
        self.provider = provider
        self.exclude_paths = PUBLIC_PATHS | set(exclude_paths)
        self.exclude_prefixes = tuple(exclude_prefixes)

        logger.info(
            "AuthMiddleware using provider %s (secure: %s)",
            provider.provider_name,
            provider.is_secure,
        )

    def is_public(self, request: Request) -> bool:
        # CORS preflight carries no credentials
        if request.method == "OPTIONS":
            return True
        path = request.url.path
        return path in self.exclude_paths or path.startswith(self.exclude_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.is_public(request):
            return await call_next(request)

        path = request.url.path
        try:
            user = await self.provider.authenticate(request)
        except AuthenticationError as e:
            security_logger.warning(
                "Authentication failed on %s %s: %s (%s)",
                request.method, path, e.message, e.code
            )
            return unauthorized_response(e)
        except Exception:
            logger.exception("Auth provider %s crashed on %s", self.provider.provider_name, path)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "Authentication system error",
                    "code": "auth_internal_error",
                },
            )

        request.state.user = user
        logger.debug("Authenticated %s for %s %s", user.subject_id, request.method, path)

        response = await call_next(request)
        response.headers["X-Auth-Provider"] = self.provider.provider_name
        return response


def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: the identity resolved by AuthMiddleware.

    Raises:
        AuthenticationError: If the request was not authenticated
    """
    user = getattr(request.state, "user", None)
    if user is None:
        raise AuthenticationError("Unauthorized", code="no_user_context")
    return user


def request_metadata(request: Request) -> dict[str, Any]:
    """Request context recorded on audit entries."""
    user = getattr(request.state, "user", None)
    metadata = {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "request_id": request.headers.get("x-request-id"),
        "session_id": user.session_id if user else None,
    }
    return {k: v for k, v in metadata.items() if v is not None}
