"""Bearer-token identities from the portal's OpenID Connect login.

Only RS256 tokens issued for the portal's client are accepted. The signing
keys are read from the issuer's JWKS document, found through discovery
unless configured explicitly.
"""

import logging
from typing import Any

import httpx
import jwt

from packages.auth.models import (
    AuthenticatedUser,
    AuthenticationError,
    InvalidTokenError,
    MissingTokenError,
    TokenClaims,
    TokenExpiredError,
)
from packages.auth.providers.base import AuthProvider
from packages.core.cache import TTLCache

logger = logging.getLogger(__name__)

JWKS_CACHE_KEY = "jwks"
BEARER_PREFIX = "Bearer "

# Registered claims mapped onto TokenClaims fields; the rest land in `extra`
REGISTERED_CLAIMS = frozenset({
    "sub", "iss", "aud", "exp", "iat", "nbf", "jti",
    "email", "preferred_username", "name",
})

# PyJWT failures with a fixed, caller-safe message
_DECODE_FAILURES = (
    (jwt.InvalidIssuerError, "Invalid token issuer"),
    (jwt.InvalidAudienceError, "Invalid token audience"),
    (jwt.InvalidSignatureError, "Invalid token signature"),
)


def bearer_token(request: Any) -> str:
    """Pull the token out of an `Authorization: Bearer ...` header."""
    header = request.headers.get("Authorization", "")
    if not header:
        raise MissingTokenError()
    if not header.startswith(BEARER_PREFIX):
        raise InvalidTokenError("Authorization header must use the Bearer scheme")

    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise MissingTokenError()
    return token


def claims_from_payload(payload: dict[str, Any]) -> TokenClaims:
    return TokenClaims(
        sub=payload.get("sub", ""),
        iss=payload.get("iss", ""),
        aud=payload.get("aud", ""),
        exp=payload.get("exp", 0),
        iat=payload.get("iat", 0),
        nbf=payload.get("nbf"),
        jti=payload.get("jti"),
        email=payload.get("email") or payload.get("preferred_username"),
        name=payload.get("name"),
        extra={k: v for k, v in payload.items() if k not in REGISTERED_CLAIMS},
    )


class OIDCProvider(AuthProvider):
    """Verifies portal bearer tokens against the issuer's signing keys.

    The key set is cached for `cache_ttl_seconds`. A token naming a key that
    is not in the cached set triggers one refetch, which covers key rotation
    at the issuer without refetching on every bad token.

    Usage:
        provider = OIDCProvider(
            issuer="https://login.example.com",
            client_id="onboard-portal",
        )
        user = await provider.authenticate(request)
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        jwks_uri: str | None = None,
        audience: str | None = None,
        clock_skew_seconds: int = 30,
        cache_ttl_seconds: int = 300,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.audience = audience or client_id
        self.clock_skew = clock_skew_seconds

        self._jwks_uri = jwks_uri
        self._keys = TTLCache(default_ttl_seconds=cache_ttl_seconds)
        self._http = http_client or httpx.AsyncClient(timeout=10.0)

        logger.info(
            "Portal sign-in via OIDC: issuer=%s audience=%s", self.issuer, self.audience
        )

    @property
    def provider_name(self) -> str:
        return "oidc"

    @property
    def is_secure(self) -> bool:
        return True

    async def _get_json(self, url: str, code: str) -> dict[str, Any]:
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Identity provider request to %s failed: %s", url, e)
            raise AuthenticationError(
                "Identity provider is unavailable", code=code
            )

    async def _jwks_location(self) -> str:
        if self._jwks_uri:
            return self._jwks_uri

        document = await self._get_json(
            f"{self.issuer}/.well-known/openid-configuration", "oidc_discovery_failed"
        )
        if "jwks_uri" not in document:
            raise AuthenticationError(
                "Identity provider metadata has no jwks_uri",
                code="oidc_discovery_failed",
            )

        self._jwks_uri = document["jwks_uri"]
        logger.info("Using signing keys from %s", self._jwks_uri)
        return self._jwks_uri

    async def _load_keys(self) -> dict[str, Any]:
        jwks = await self._get_json(await self._jwks_location(), "jwks_fetch_failed")
        logger.debug("Loaded %d signing keys", len(jwks.get("keys", [])))
        return jwks

    async def _signing_key(self, kid: str) -> Any:
        for attempt in range(2):
            if attempt:
                self._keys.delete(JWKS_CACHE_KEY)
            jwks = await self._keys.get_or_set(JWKS_CACHE_KEY, self._load_keys)
            for jwk in jwks.get("keys", []):
                if jwk.get("kid") == kid:
                    return jwt.algorithms.RSAAlgorithm.from_jwk(jwk)
        return None

    async def authenticate(self, request: Any) -> AuthenticatedUser:
        claims = await self.validate_token(bearer_token(request))
        return AuthenticatedUser.from_claims(claims, self.provider_name)

    async def validate_token(self, token: str) -> TokenClaims:
        """Verify signature, issuer, audience and lifetime of a token."""
        try:
            kid = jwt.get_unverified_header(token).get("kid")
        except jwt.DecodeError:
            raise InvalidTokenError("Token is not a well-formed JWT")

        if not kid:
            raise InvalidTokenError("Token header has no key ID")

        key = await self._signing_key(kid)
        if key is None:
            raise InvalidTokenError(f"Signing key '{kid}' not found at issuer")

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.clock_skew,
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.PyJWTError as e:
            for error_type, message in _DECODE_FAILURES:
                if isinstance(e, error_type):
                    raise InvalidTokenError(message)
            raise InvalidTokenError(f"Token rejected: {e}")

        return claims_from_payload(payload)

    async def close(self) -> None:
        await self._http.aclose()
