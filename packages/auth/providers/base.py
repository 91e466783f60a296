"""Identity provider interface.

The portal never trusts a caller-supplied role. A provider only establishes
who the caller is; the role comes from the role store afterwards.
"""

from abc import ABC, abstractmethod
from typing import Any

from packages.auth.models import AuthenticatedUser


class AuthProvider(ABC):
    """Turns an incoming request into a verified portal identity.

    `AuthMiddleware` calls `authenticate` once per non-public request and
    stores the result on `request.state.user`. The identity key used for
    role lookups is `AuthenticatedUser.subject_id`, the lowercased email.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short name echoed in the X-Auth-Provider response header."""

    @property
    @abstractmethod
    def is_secure(self) -> bool:
        """False for providers that production settings must reject."""

    @abstractmethod
    async def authenticate(self, request: Any) -> AuthenticatedUser:
        """Identify the caller or raise an `AuthenticationError` subclass.

        A request without credentials raises `MissingTokenError`. Credentials
        that fail verification raise `InvalidTokenError` or
        `TokenExpiredError`. The middleware maps all of them to a 401.
        """

    async def close(self) -> None:
        """Release HTTP clients or other resources on shutdown."""
        return None
