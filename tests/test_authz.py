"""Tests for the role registry and the permission evaluator."""

import asyncio

import pytest

from conftest import ADMIN, INTERN, MENTOR, SEED_ROLES, STAFF, FlakyRoleStore
from packages.authz.admin import RoleAdministration
from packages.authz.engine import PermissionEvaluator
from packages.authz.models import (
    Capability,
    Permission,
    Role,
    ROLE_GRANTS,
)


# =============================================================================
# Role Registry
# =============================================================================


class TestRoleGrants:
    """Test the static role-to-permission grants."""

    def test_every_role_has_a_grant(self):
        assert set(ROLE_GRANTS) == set(Role)

    def test_admin_holds_every_permission(self, registry):
        assert registry.permissions_for(Role.ADMIN) == frozenset(Permission)

    def test_staff_can_upload_but_not_manage_users(self, registry):
        """Staff holds the upload capability and nothing that manages users."""
        assert registry.has_capability(Role.STAFF, Capability.UPLOAD_DOCUMENTS)
        assert not registry.has_capability(Role.STAFF, Capability.MANAGE_USERS)
        assert Permission.DOCUMENT_CREATE in registry.permissions_for(Role.STAFF)
        assert Permission.USER_ASSIGN_ROLES not in registry.permissions_for(Role.STAFF)

    def test_intern_has_no_permissions(self, registry):
        assert registry.permissions_for(Role.INTERN) == frozenset()

    def test_mentor_and_team_lead_share_field_grants(self, registry):
        mentor = registry.permissions_for(Role.MENTOR)
        assert mentor == registry.permissions_for(Role.TEAM_LEAD)
        assert Permission.REPORT_VIEW in mentor
        assert Permission.USER_VIEW not in mentor
        assert Permission.APPLICANT_DELETE not in mentor

    def test_only_admin_can_assign_roles(self, registry):
        assert registry.roles_with_permission(Permission.USER_ASSIGN_ROLES) == [Role.ADMIN]

    def test_grants_are_immutable(self, registry):
        with pytest.raises(AttributeError):
            registry.permissions_for(Role.STAFF).add(Permission.USER_VIEW)


class TestRoleRegistry:
    """Test role parsing and lookups."""

    def test_parse_role(self, registry):
        assert registry.parse_role("team_lead") is Role.TEAM_LEAD
        assert registry.parse_role(Role.ADMIN) is Role.ADMIN
        assert registry.parse_role("superuser") is None
        assert registry.parse_role(None) is None
        assert registry.parse_role(3) is None

    def test_is_valid_role(self, registry):
        assert registry.is_valid_role("mentor")
        assert not registry.is_valid_role("Mentor")
        assert not registry.is_valid_role("")

    def test_unknown_role_has_empty_grant(self, registry):
        assert registry.permissions_for("superuser") == frozenset()
        assert registry.permissions_for(None) == frozenset()

    def test_display_names(self, registry):
        assert registry.display_name(Role.TEAM_LEAD) == "Team Lead"
        assert registry.display_name(None) == "No role"

    def test_capabilities_cover_every_flag(self, registry):
        flags = registry.capabilities_for(Role.INTERN)
        assert set(flags) == set(Capability)
        assert not any(flags.values())

        assert all(registry.capabilities_for(Role.ADMIN).values())

    def test_route_access(self, registry):
        assert registry.can_access_route(Role.INTERN, "/onboarding")
        assert not registry.can_access_route(Role.INTERN, "/reports")
        assert registry.can_access_route(Role.STAFF, "/team")
        assert not registry.can_access_route(None, "/")
        assert not registry.can_access_route(Role.ADMIN, "/unlisted")

    def test_can_perform_action_allowed(self, registry):
        decision = registry.can_perform_action(Role.STAFF, "document", "create")
        assert decision.allowed
        assert decision.permission == "document:create"

    def test_can_perform_action_suggests_narrowest_role(self, registry):
        """A denial names the smallest grant that would allow it."""
        decision = registry.can_perform_action(Role.STAFF, "report", "view")
        assert not decision.allowed
        assert decision.required_role == Role.MENTOR

        decision = registry.can_perform_action(Role.MENTOR, "user", "assign_roles")
        assert decision.required_role == Role.ADMIN

    def test_can_perform_unknown_action(self, registry):
        decision = registry.can_perform_action(Role.ADMIN, "spaceship", "launch")
        assert not decision.allowed
        assert decision.required_role is None


# =============================================================================
# Permission Evaluator
# =============================================================================


class TestRoleChecks:
    """Test the pure role checks."""

    def test_has_permission(self, evaluator):
        assert evaluator.has_permission(Role.MENTOR, Permission.REPORT_VIEW)
        assert evaluator.has_permission("mentor", "report:view")
        assert not evaluator.has_permission(Role.STAFF, Permission.REPORT_VIEW)

    def test_has_any_with_empty_list_is_false(self, evaluator):
        assert not evaluator.has_any_permission(Role.ADMIN, [])

    def test_has_all_with_empty_list_is_true_for_known_role(self, evaluator):
        assert evaluator.has_all_permissions(Role.INTERN, [])

    def test_no_role_fails_everything(self, evaluator):
        """A role-less caller is denied even the empty requirement."""
        assert not evaluator.has_permission(None, Permission.DOCUMENT_VIEW)
        assert not evaluator.has_any_permission(None, [Permission.DOCUMENT_VIEW])
        assert not evaluator.has_all_permissions(None, [])
        assert not evaluator.has_all_permissions("superuser", [])

    def test_has_any_and_all(self, evaluator):
        perms = [Permission.DOCUMENT_CREATE, Permission.USER_VIEW]
        assert evaluator.has_any_permission(Role.STAFF, perms)
        assert not evaluator.has_all_permissions(Role.STAFF, perms)
        assert evaluator.has_all_permissions(Role.ADMIN, perms)

    def test_single_permission_is_not_split_into_characters(self, evaluator):
        assert evaluator.has_any_permission(Role.ADMIN, "user:view")
        assert evaluator.has_any_permission(Role.ADMIN, Permission.USER_VIEW)
        assert evaluator.has_all_permissions(Role.ADMIN, "user:view")
        assert not evaluator.has_all_permissions(Role.STAFF, "user:view")
        assert evaluator.has_any_permission(Role.STAFF, (Permission.DOCUMENT_VIEW,))


class TestIdentityChecks:
    """Test identity checks through the role store and cache."""

    @pytest.mark.asyncio
    async def test_resolve_role(self, evaluator):
        assert await evaluator.resolve_role(MENTOR) == Role.MENTOR
        assert await evaluator.resolve_role("nobody@example.com") is None
        assert await evaluator.resolve_role(None) is None

    @pytest.mark.asyncio
    async def test_check_allowed_and_denied(self, evaluator):
        allowed = await evaluator.check(ADMIN, Permission.USER_ASSIGN_ROLES)
        assert allowed.allowed
        assert allowed.role == Role.ADMIN

        denied = await evaluator.check(STAFF, Permission.USER_VIEW)
        assert not denied.allowed
        assert denied.role == Role.STAFF

    @pytest.mark.asyncio
    async def test_unknown_identity_is_denied(self, evaluator):
        decision = await evaluator.check("nobody@example.com", Permission.DOCUMENT_VIEW)
        assert not decision.allowed
        assert decision.role is None

    @pytest.mark.asyncio
    async def test_role_lookup_is_cached(self, evaluator, role_store):
        """Repeated checks for one identity hit the store once."""
        await evaluator.check(MENTOR, Permission.REPORT_VIEW)
        await evaluator.check(MENTOR, Permission.REPORT_VIEW)
        await evaluator.check(MENTOR, Permission.ONBOARDING_VIEW)

        assert role_store.reads == 1

    @pytest.mark.asyncio
    async def test_cached_role_expires(self, evaluator, role_store, clock):
        await evaluator.check(MENTOR, Permission.REPORT_VIEW)
        clock.advance(301)
        await evaluator.check(MENTOR, Permission.REPORT_VIEW)

        assert role_store.reads == 2

    @pytest.mark.asyncio
    async def test_store_failure_fails_closed_and_is_not_cached(
        self, evaluator, role_store, cache
    ):
        """An unreachable store denies, and the denial is not remembered."""
        role_store.fail_reads = True
        decision = await evaluator.check(ADMIN, Permission.USER_VIEW)
        assert not decision.allowed
        assert cache.size() == 0

        role_store.fail_reads = False
        decision = await evaluator.check(ADMIN, Permission.USER_VIEW)
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_identity_any_all(self, evaluator):
        perms = [Permission.DOCUMENT_CREATE, Permission.USER_VIEW]
        assert await evaluator.identity_has_any_permission(STAFF, perms)
        assert not await evaluator.identity_has_all_permissions(STAFF, perms)
        assert not await evaluator.identity_has_any_permission(STAFF, [])
        assert await evaluator.identity_has_all_permissions(INTERN, [])
        assert not await evaluator.identity_has_all_permissions("nobody@example.com", [])

    @pytest.mark.asyncio
    async def test_stale_role_until_invalidated(self, evaluator, role_store):
        """A direct store change is invisible until the identity is invalidated."""
        assert not await evaluator.identity_has_permission(STAFF, Permission.REPORT_VIEW)

        await role_store.upsert_role_assignment(STAFF, Role.MENTOR)
        assert not await evaluator.identity_has_permission(STAFF, Permission.REPORT_VIEW)

        assert evaluator.invalidate(STAFF) >= 1
        assert await evaluator.identity_has_permission(STAFF, Permission.REPORT_VIEW)

    @pytest.mark.asyncio
    async def test_invalidate_is_scoped_to_one_identity(self, evaluator, cache):
        await evaluator.check(STAFF, Permission.DOCUMENT_VIEW)
        await evaluator.check(MENTOR, Permission.DOCUMENT_VIEW)

        evaluator.invalidate(STAFF)

        assert cache.get(f"{MENTOR}|role") == "mentor"
        assert cache.get(f"{STAFF}|role") is None

class HeldRoleStore(FlakyRoleStore):
    """Role store whose next read for one subject blocks until released.

    The role is read before blocking, so the held lookup returns what the
    store held when the lookup started.
    """

    def __init__(self, initial, held_subject: str):
        super().__init__(initial)
        self.held_subject = held_subject
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def find_role_assignment(self, subject_id):
        role = await super().find_role_assignment(subject_id)
        if subject_id == self.held_subject and not self.entered.is_set():
            self.entered.set()
            await self.release.wait()
        return role


class TestInvalidationRace:
    """Invalidation must win over lookups already in flight."""

    @pytest.mark.asyncio
    async def test_removal_during_lookup_is_not_undone(self, registry, cache, audit_logger):
        store = HeldRoleStore(SEED_ROLES, held_subject=MENTOR)
        evaluator = PermissionEvaluator(registry, store, cache)
        admin = RoleAdministration(registry, evaluator, store, audit_logger)

        in_flight = asyncio.create_task(evaluator.check(MENTOR, Permission.REPORT_VIEW))
        await store.entered.wait()

        assert await admin.remove_role(MENTOR, ADMIN)
        store.release.set()

        # The lookup started before the removal, so it may still answer yes
        assert (await in_flight).allowed
        assert cache.get(f"{MENTOR}|role") is None
        assert cache.get(f"{MENTOR}|report:view") is None

        decision = await evaluator.check(MENTOR, Permission.REPORT_VIEW)
        assert not decision.allowed
        assert decision.role is None

    @pytest.mark.asyncio
    async def test_lookup_after_invalidation_is_cached_again(self, registry, cache):
        store = HeldRoleStore(SEED_ROLES, held_subject=STAFF)
        evaluator = PermissionEvaluator(registry, store, cache)

        in_flight = asyncio.create_task(evaluator.resolve_role(STAFF))
        await store.entered.wait()
        evaluator.invalidate(STAFF)
        store.release.set()
        assert await in_flight == Role.STAFF
        assert cache.get(f"{STAFF}|role") is None

        assert await evaluator.resolve_role(STAFF) == Role.STAFF
        assert cache.get(f"{STAFF}|role") == "staff"
