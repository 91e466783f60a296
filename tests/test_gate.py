"""Tests for permission contexts and gated rendering."""

from packages.authz.gate import (
    PermissionGate,
    can_create,
    can_delete,
    can_update,
    can_view,
    permission_context,
)
from packages.authz.models import Capability, Permission, Role


class TestPermissionContext:
    """Test resolving a role into a context."""

    def test_context_for_staff(self, registry):
        context = permission_context(registry, "staff")

        assert context.role == Role.STAFF
        assert context.display_name == "Staff"
        assert context.has_permission(Permission.DOCUMENT_CREATE)
        assert context.has_permission("document:view")
        assert not context.has_permission(Permission.USER_VIEW)
        assert context.capabilities[Capability.UPLOAD_DOCUMENTS]

    def test_context_without_role(self, registry):
        context = permission_context(registry, None)

        assert context.role is None
        assert context.permissions == frozenset()
        assert not context.has_all_permissions([])
        assert not context.has_any_permission([])

    def test_all_and_any(self, registry):
        context = permission_context(registry, Role.MENTOR)
        perms = [Permission.REPORT_VIEW, Permission.USER_VIEW]

        assert context.has_any_permission(perms)
        assert not context.has_all_permissions(perms)
        assert context.has_all_permissions([])


class TestPermissionGate:
    """Test choosing between content and fallback."""

    def test_renders_content_when_allowed(self, registry):
        context = permission_context(registry, Role.ADMIN)
        gate = PermissionGate(Permission.USER_ASSIGN_ROLES, fallback="hidden")

        assert gate.render(context, "panel") == "panel"

    def test_renders_fallback_when_denied(self, registry):
        context = permission_context(registry, Role.INTERN)
        gate = PermissionGate(Permission.USER_ASSIGN_ROLES, fallback="hidden")

        assert gate.render(context, "panel") == "hidden"

    def test_default_fallback_is_none(self, registry):
        context = permission_context(registry, Role.INTERN)
        assert PermissionGate(Permission.REPORT_VIEW).render(context, "panel") is None

    def test_callable_content_is_only_called_when_allowed(self, registry):
        calls = []

        def panel():
            calls.append(1)
            return "rendered"

        gate = PermissionGate(Permission.REPORT_VIEW)

        assert gate.render(permission_context(registry, Role.STAFF), panel) is None
        assert calls == []
        assert gate.render(permission_context(registry, Role.MENTOR), panel) == "rendered"
        assert calls == [1]

    def test_list_any_and_require_all(self, registry):
        context = permission_context(registry, Role.STAFF)
        perms = [Permission.DOCUMENT_CREATE, Permission.DOCUMENT_DELETE]

        assert PermissionGate(perms).allows(context)
        assert not PermissionGate(perms, require_all=True).allows(context)

    def test_no_permission_always_renders(self, registry):
        context = permission_context(registry, None)
        assert PermissionGate().allows(context)

    def test_empty_any_list_renders_fallback(self, registry):
        """An empty "any" requirement is never satisfied, not even for admin."""
        for role in (Role.INTERN, Role.ADMIN):
            context = permission_context(registry, role)
            gate = PermissionGate([], fallback="hidden")

            assert gate.render(context, "secret") == "hidden"

    def test_empty_all_list_needs_a_role(self, registry):
        gate = PermissionGate([], fallback="hidden", require_all=True)

        assert gate.render(permission_context(registry, Role.INTERN), "panel") == "panel"
        assert gate.render(permission_context(registry, None), "panel") == "hidden"

    def test_tuples_and_sets_are_permission_lists(self, registry):
        context = permission_context(registry, Role.STAFF)
        perms = (Permission.DOCUMENT_CREATE, Permission.DOCUMENT_DELETE)

        assert PermissionGate(perms).allows(context)
        assert not PermissionGate(set(perms), require_all=True).allows(context)
        assert not PermissionGate(frozenset(), fallback="-").allows(context)

    def test_resource_helpers(self, registry):
        staff = permission_context(registry, Role.STAFF)

        assert can_view("document").allows(staff)
        assert can_create("document").allows(staff)
        assert not can_update("document").allows(staff)
        assert not can_delete("applicant").allows(staff)
        assert can_delete("applicant", fallback="-").render(staff, "delete") == "-"
