"""Authentication configuration.

Which identity provider the service trusts depends on the deployment mode;
the rules below are checked when the configuration is built, so an unsafe
combination never reaches startup.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class AuthMode(str, Enum):
    """Deployment mode."""

    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"
    TEST = "test"


ProviderType = Literal["oidc", "header", "none"]


class AuthConfig(BaseModel):
    """Identity provider configuration.

    Security rules:
    - Production: OIDC required, header auth forbidden
    - Everywhere else: header auth may be enabled for local work and tests
    """

    mode: AuthMode = AuthMode.DEVELOPMENT

    # OIDC
    oidc_issuer: str | None = Field(default=None, description="OIDC issuer URL")
    oidc_client_id: str | None = Field(default=None, description="OAuth client ID")
    oidc_jwks_uri: str | None = Field(
        default=None,
        description="JWKS URI (discovered from the issuer if not set)"
    )
    oidc_audience: str | None = Field(
        default=None,
        description="Expected audience claim, defaults to the client ID"
    )

    # Development header auth
    allow_header_auth: bool = Field(
        default=False,
        description="Trust the X-User-Email header (never in production)"
    )
    header_auth_allowlist: list[str] = Field(
        default_factory=list,
        description="Emails accepted by header auth; empty accepts any"
    )

    token_clock_skew_seconds: int = Field(default=30, ge=0)
    token_cache_ttl_seconds: int = Field(
        default=300,
        gt=0,
        description="How long a fetched JWKS is reused"
    )

    @model_validator(mode="after")
    def validate_production_security(self) -> "AuthConfig":
        if self.mode != AuthMode.PRODUCTION:
            return self

        if self.allow_header_auth:
            raise ValueError(
                "SECURITY ERROR: Header-based authentication is forbidden "
                "in production. Configure OIDC."
            )
        if self.oidc_issuer is None:
            raise ValueError(
                "SECURITY ERROR: Production mode requires OIDC "
                "authentication. Set oidc_issuer."
            )
        return self

    def get_provider_type(self) -> ProviderType:
        """OIDC when configured, else header auth when allowed."""
        if self.oidc_issuer:
            return "oidc"
        if self.allow_header_auth and self.mode != AuthMode.PRODUCTION:
            return "header"
        return "none"

    def is_secure(self) -> bool:
        return self.get_provider_type() == "oidc"
