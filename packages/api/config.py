"""API configuration via pydantic-settings."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="ONBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"

    # API configuration
    api_title: str = "Onboard Access API"
    api_version: str = "1.0.0"

    # CORS origins
    cors_origins: list[str] = ["http://localhost:3000"]

    # === AUTH SETTINGS ===
    auth_mode: Literal["production", "staging", "development", "test"] = "development"

    # OIDC configuration
    oidc_issuer: str | None = None
    oidc_client_id: str | None = None
    oidc_jwks_uri: str | None = None
    oidc_audience: str | None = None

    # Development auth (NEVER enable in production)
    allow_header_auth: bool = True  # Default True for dev, enforce False in production
    header_auth_allowlist: list[str] = []

    # === CACHE SETTINGS ===
    cache_ttl_seconds: float = 300
    cache_sweep_interval_seconds: float = 60

    # === ROLE STORE SETTINGS ===
    role_store_type: Literal["memory", "file"] = "memory"
    role_store_path: str = "data/roles.json"
    bootstrap_admin_email: str | None = None

    # === AUDIT SETTINGS ===
    audit_storage_type: Literal["file", "memory"] = "file"
    audit_storage_path: str = "data/audit"
    audit_queue_size: int = 1000

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.auth_mode == "production"

    @property
    def auth_config(self):
        """Get auth configuration object."""
        from packages.auth.config import AuthConfig, AuthMode

        return AuthConfig(
            mode=AuthMode(self.auth_mode),
            oidc_issuer=self.oidc_issuer,
            oidc_client_id=self.oidc_client_id,
            oidc_jwks_uri=self.oidc_jwks_uri,
            oidc_audience=self.oidc_audience,
            allow_header_auth=self.allow_header_auth and not self.is_production,
            header_auth_allowlist=self.header_auth_allowlist,
            token_cache_ttl_seconds=int(self.cache_ttl_seconds),
        )

    @property
    def role_store_config(self) -> dict[str, str]:
        return {"type": self.role_store_type, "path": self.role_store_path}

    @property
    def audit_storage_config(self) -> dict[str, str]:
        return {"type": self.audit_storage_type, "path": self.audit_storage_path}
