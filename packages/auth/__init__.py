"""Onboard Access Authentication Package.

Resolves the identity behind a request:
- OIDC (OpenID Connect) bearer tokens validated with JWKS
- Environment-gated development header auth

Usage:
    from packages.auth import get_auth_provider, AuthMiddleware

    provider = get_auth_provider(config)
    app.add_middleware(AuthMiddleware, provider=provider)
"""

from packages.auth.config import AuthConfig, AuthMode
from packages.auth.models import (
    AuthenticatedUser,
    AuthenticationError,
    InvalidTokenError,
    MissingTokenError,
    TokenClaims,
    TokenExpiredError,
)
from packages.auth.middleware import AuthMiddleware, get_current_user
from packages.auth.providers.base import AuthProvider

__all__ = [
    "AuthConfig",
    "AuthMode",
    "AuthenticatedUser",
    "AuthenticationError",
    "InvalidTokenError",
    "MissingTokenError",
    "TokenClaims",
    "TokenExpiredError",
    "AuthMiddleware",
    "AuthProvider",
    "get_auth_provider",
    "get_current_user",
]


def get_auth_provider(config: AuthConfig) -> AuthProvider:
    """Get the appropriate auth provider based on configuration."""
    from packages.auth.providers.dev_header import DevHeaderProvider
    from packages.auth.providers.oidc import OIDCProvider

    provider_type = config.get_provider_type()
    if provider_type == "oidc":
        return OIDCProvider(
            issuer=config.oidc_issuer,
            client_id=config.oidc_client_id or "",
            jwks_uri=config.oidc_jwks_uri,
            audience=config.oidc_audience,
            clock_skew_seconds=config.token_clock_skew_seconds,
            cache_ttl_seconds=config.token_cache_ttl_seconds,
        )
    elif provider_type == "header":
        return DevHeaderProvider(email_allowlist=config.header_auth_allowlist or None)
    else:
        raise ValueError("No valid auth provider configured")
