"""Onboard Access API: role administration and audit for the onboarding portal."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from packages.api.config import Settings
from packages.api.security import add_security_headers, register_error_handlers
from packages.audit.logger import AuditLogger
from packages.audit.storage import AuditStore, get_audit_storage
from packages.auth import AuthMiddleware, get_auth_provider
from packages.auth.providers.base import AuthProvider
from packages.authz.admin import RoleAdministration
from packages.authz.engine import PermissionEvaluator
from packages.authz.registry import RoleRegistry
from packages.authz.store import RoleStore, get_role_store
from packages.core.cache import CacheSweeper, TTLCache

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("onboard.security")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "1.0.0"
    cache_entries: int = 0
    audit_dispatcher_running: bool = False


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers and seed the bootstrap admin."""
    state = app.state
    settings: Settings = state.settings

    state.sweeper.start()
    await state.audit_logger.start()

    if settings.bootstrap_admin_email:
        await state.role_admin.bootstrap_admin(settings.bootstrap_admin_email)

    logger.info("Onboard Access API started (auth mode: %s)", settings.auth_mode)
    try:
        yield
    finally:
        await state.audit_logger.stop()
        state.sweeper.stop()
        await state.auth_provider.close()
        logger.info("Onboard Access API stopped")


# =============================================================================
# App Factory
# =============================================================================


def create_app(
    settings: Settings | None = None,
    *,
    role_store: RoleStore | None = None,
    audit_store: AuditStore | None = None,
    auth_provider: AuthProvider | None = None,
) -> FastAPI:
    """Build the API with its services wired onto `app.state`.

    Stores and the auth provider can be injected; otherwise they are built
    from settings.
    """
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper())

    docs_enabled = not settings.is_production
    app = FastAPI(
        title=settings.api_title,
        description="Role-based access control and audit logging for the "
        "onboarding portal.",
        version=settings.api_version,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        lifespan=lifespan,
    )

    # Services
    cache = TTLCache(default_ttl_seconds=settings.cache_ttl_seconds)
    registry = RoleRegistry()
    role_store = role_store or get_role_store(settings.role_store_config)
    audit_store = audit_store or get_audit_storage(settings.audit_storage_config)
    audit_logger = AuditLogger(audit_store, queue_size=settings.audit_queue_size)
    evaluator = PermissionEvaluator(registry, role_store, cache)

    app.state.settings = settings
    app.state.cache = cache
    app.state.sweeper = CacheSweeper(cache, settings.cache_sweep_interval_seconds)
    app.state.registry = registry
    app.state.role_store = role_store
    app.state.audit_store = audit_store
    app.state.audit_logger = audit_logger
    app.state.evaluator = evaluator
    app.state.role_admin = RoleAdministration(registry, evaluator, role_store, audit_logger)

    if auth_provider is None:
        auth_provider = get_auth_provider(settings.auth_config)
    if not auth_provider.is_secure:
        security_logger.warning(
            "Insecure auth provider '%s' active in %s mode",
            auth_provider.provider_name,
            settings.auth_mode,
        )
    app.state.auth_provider = auth_provider

    register_error_handlers(app)

    # Middleware: the last added runs first
    app.add_middleware(
        AuthMiddleware,
        provider=auth_provider,
        exclude_prefixes=["/docs", "/redoc", "/openapi.json"],
    )
    app.middleware("http")(add_security_headers)

    allowed_origins = settings.cors_origins
    if settings.is_production and "*" in allowed_origins:
        # In production, require explicit origin configuration
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-User-Email"],
    )

    from packages.api.access import router as access_router
    from packages.api.audit import router as audit_router
    from packages.api.roles import router as roles_router

    app.include_router(roles_router)
    app.include_router(access_router)
    app.include_router(audit_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint (no auth required)."""
        return HealthResponse(
            status="ok",
            version=settings.api_version,
            cache_entries=app.state.cache.size(),
            audit_dispatcher_running=app.state.audit_logger.is_running(),
        )

    return app


__all__ = ["create_app", "lifespan", "Settings"]
