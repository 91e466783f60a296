"""Identity models shared by the auth providers and the API.

An identity says who the caller is and nothing about what they may do.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class TokenClaims(BaseModel):
    """Claims of a verified portal sign-in token.

    Registered claims are typed fields. Anything the issuer adds on top,
    such as a department or tenant hint, is kept verbatim in `extra`.
    """

    sub: str = Field(description="Issuer's id for the person")
    iss: str = Field(description="Issuer URL the token was checked against")
    aud: str | list[str] = Field(description="Portal client id(s)")
    exp: int = Field(description="Expiry, Unix seconds")
    iat: int = Field(description="Issue time, Unix seconds")
    nbf: int | None = None
    jti: str | None = Field(default=None, description="Sign-in session id")

    email: str | None = Field(default=None, description="Becomes the role store key")
    name: str | None = None

    extra: dict[str, Any] = Field(default_factory=dict)


class AuthenticatedUser(BaseModel):
    """Verified user identity from the identity provider.

    Carries no authorization state: the user's role is looked up in the
    role store by `subject_id`.
    """

    user_id: str = Field(description="Provider-specific user id")
    email: str | None = None
    name: str | None = None

    token_exp: datetime = Field(description="When the token expires")
    token_iat: datetime = Field(description="When the token was issued")

    auth_provider: str = Field(description="Provider name, e.g. oidc or dev_header")
    auth_method: str = Field(default="bearer", description="bearer or header")
    session_id: str | None = None

    @property
    def subject_id(self) -> str:
        """Stable key for role assignments: the lowercased email, else user_id."""
        if self.email:
            return self.email.strip().lower()
        return self.user_id

    @classmethod
    def from_claims(cls, claims: TokenClaims, provider: str) -> "AuthenticatedUser":
        return cls(
            user_id=claims.sub,
            email=claims.email,
            name=claims.name,
            token_exp=datetime.fromtimestamp(claims.exp, tz=timezone.utc),
            token_iat=datetime.fromtimestamp(claims.iat, tz=timezone.utc),
            auth_provider=provider,
            session_id=claims.jti,
        )


class AuthenticationError(Exception):
    """The caller could not be identified. Always rendered as a 401."""

    def __init__(self, message: str, code: str = "auth_failed"):
        self.message = message
        self.code = code
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    """The bearer token is past its expiry (beyond the allowed skew)."""

    def __init__(self):
        super().__init__("Token has expired", "token_expired")


class InvalidTokenError(AuthenticationError):
    """The credentials were present but could not be verified."""

    def __init__(self, reason: str = "Token validation failed"):
        super().__init__(reason, "invalid_token")


class MissingTokenError(AuthenticationError):
    """The request carried no credentials at all."""

    def __init__(self):
        super().__init__("No authentication token provided", "missing_token")
