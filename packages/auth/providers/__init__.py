"""Authentication providers.

Pluggable authentication backends:
- OIDC: OpenID Connect bearer tokens
- DevHeader: Development-only header-based auth
"""

from packages.auth.providers.base import AuthProvider
from packages.auth.providers.dev_header import DevHeaderProvider
from packages.auth.providers.oidc import OIDCProvider

__all__ = [
    "AuthProvider",
    "DevHeaderProvider",
    "OIDCProvider",
]
