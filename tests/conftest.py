"""Shared fixtures: seeded role store, fake clock, wired services and app."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from packages.api import create_app
from packages.api.config import Settings
from packages.audit.logger import AuditLogger
from packages.audit.storage import InMemoryAuditStorage
from packages.authz.admin import RoleAdministration
from packages.authz.engine import PermissionEvaluator
from packages.authz.models import Role
from packages.authz.registry import RoleRegistry
from packages.authz.store import InMemoryRoleStore
from packages.core.cache import TTLCache

ADMIN = "admin@example.com"
MENTOR = "mentor@example.com"
TEAM_LEAD = "lead@example.com"
INTERN = "intern@example.com"
STAFF = "staff@example.com"

SEED_ROLES = {
    ADMIN: Role.ADMIN,
    MENTOR: Role.MENTOR,
    TEAM_LEAD: Role.TEAM_LEAD,
    INTERN: Role.INTERN,
    STAFF: Role.STAFF,
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyRoleStore(InMemoryRoleStore):
    """In-memory role store that can be told to fail reads or writes."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0

    async def find_role_assignment(self, subject_id):
        self.reads += 1
        if self.fail_reads:
            raise ConnectionError("role store unreachable")
        return await super().find_role_assignment(subject_id)

    async def list_assignments(self):
        if self.fail_reads:
            raise ConnectionError("role store unreachable")
        return await super().list_assignments()

    async def upsert_role_assignment(self, subject_id, role, assigned_by=None):
        if self.fail_writes:
            raise ConnectionError("role store write failed")
        await super().upsert_role_assignment(subject_id, role, assigned_by)

    async def clear_role_assignment(self, subject_id, cleared_by=None):
        if self.fail_writes:
            raise ConnectionError("role store write failed")
        await super().clear_role_assignment(subject_id, cleared_by)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(default_ttl_seconds=300, clock=clock)


@pytest.fixture
def registry() -> RoleRegistry:
    return RoleRegistry()


@pytest.fixture
def role_store() -> FlakyRoleStore:
    return FlakyRoleStore(SEED_ROLES)


@pytest.fixture
def audit_store() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_store: InMemoryAuditStorage) -> AuditLogger:
    return AuditLogger(audit_store)


@pytest.fixture
def evaluator(registry, role_store, cache) -> PermissionEvaluator:
    return PermissionEvaluator(registry, role_store, cache)


@pytest.fixture
def role_admin(registry, evaluator, role_store, audit_logger) -> RoleAdministration:
    return RoleAdministration(registry, evaluator, role_store, audit_logger)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        auth_mode="test",
        allow_header_auth=True,
        role_store_type="memory",
        audit_storage_type="memory",
        audit_storage_path=str(tmp_path / "audit"),
    )


@pytest.fixture
def app(settings, role_store, audit_store):
    return create_app(settings, role_store=role_store, audit_store=audit_store)


@pytest.fixture
def client(app) -> TestClient:
    """Test client fixture. Lifespan is not run, so audit writes are inline."""
    return TestClient(app)


def as_user(email: str) -> dict[str, str]:
    """Development auth headers for a user."""
    return {"X-User-Email": email}
