"""Header identities for local development and tests.

The caller simply states who they are:
- X-User-Email: identity (required, must look like an email)
- X-User-ID: stable user id (optional, defaults to the email)
- X-User-Name: display name (optional)

Nothing is verified, so production settings refuse to build this provider.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from packages.auth.models import (
    AuthenticatedUser,
    AuthenticationError,
    MissingTokenError,
)
from packages.auth.providers.base import AuthProvider

logger = logging.getLogger(__name__)


class DevHeaderProvider(AuthProvider):
    """Trusts the X-User-Email header as the caller's identity.

    An optional allowlist narrows which emails may sign in, for shared
    staging deployments.

    Usage:
        curl -H "X-User-Email: admin@example.com" localhost:8000/me/permissions
    """

    def __init__(self, email_allowlist: list[str] | None = None):
        self.email_allowlist = (
            {e.lower() for e in email_allowlist} if email_allowlist else None
        )

        logger.warning(
            "Header sign-in is enabled: identities are NOT verified "
            "(allowlist: %s)",
            sorted(self.email_allowlist) if self.email_allowlist else "none",
        )

    @property
    def provider_name(self) -> str:
        return "dev_header"

    @property
    def is_secure(self) -> bool:
        return False

    async def authenticate(self, request: Any) -> AuthenticatedUser:
        email = request.headers.get("X-User-Email", "").strip()
        if not email:
            raise MissingTokenError()

        if "@" not in email:
            raise AuthenticationError(
                f"'{email}' is not an email address",
                code="invalid_identity"
            )

        if self.email_allowlist is not None and email.lower() not in self.email_allowlist:
            raise AuthenticationError(
                f"User '{email}' is not allowed to sign in here",
                code="user_not_allowed"
            )

        user_id = request.headers.get("X-User-ID", email)

        now = datetime.now(timezone.utc)
        return AuthenticatedUser(
            user_id=user_id,
            email=email,
            name=request.headers.get("X-User-Name", email.split("@")[0]),
            token_exp=now + timedelta(hours=24),
            token_iat=now,
            auth_provider=self.provider_name,
            auth_method="header",
        )
