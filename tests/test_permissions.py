"""
Tests for the Permission Resolver.

Validates:
- Positive grants and ActionNotPermitted for everything outside them
- Restrictions overriding positive grants
- Scope requirements
- Conditions returned, not enforced
- Nested (per-category) resources
"""

from __future__ import annotations

import pytest

from certgate.governance.permissions import (
    PermissionResolver,
    ResolutionContext,
    permission_resolver,
)
from certgate.policy.catalog import RoleCatalog
from certgate.policy.matrix import KNOWN_ACTIONS, PERMISSION_MATRIX, ROLE_DEFINITIONS
from certgate.policy.schema import DenialReason, ResourcePermission, Role, Scope


class TestPermissionResolver:
    """Test grant resolution against the shipped matrix."""

    def setup_method(self):
        self.resolver = PermissionResolver()

    def test_vendor_can_create_application(self):
        result = self.resolver.resolve(Role.VENDOR_DEVELOPER, "applications", "create")
        assert result.allowed
        assert result.scope == Scope.OWN

    def test_vendor_cannot_approve_application(self):
        result = self.resolver.resolve(Role.VENDOR_DEVELOPER, "applications", "approve")
        assert not result.allowed
        assert result.reason == DenialReason.ACTION_NOT_PERMITTED
        assert "Allowed actions" in result.message

    def test_every_ungranted_action_is_not_permitted(self):
        """For every (role, resource, action) outside the grant: ActionNotPermitted."""
        for role, resources in PERMISSION_MATRIX.items():
            for resource, permission in resources.items():
                if permission.is_nested:
                    continue
                for action in sorted(KNOWN_ACTIONS - permission.actions):
                    result = self.resolver.resolve(role, resource, action)
                    assert result.reason == DenialReason.ACTION_NOT_PERMITTED, (role, resource, action)

    def test_missing_resource_is_no_resource_access(self):
        result = self.resolver.resolve(Role.PUBLIC_USER, "applications", "read")
        assert result.reason == DenialReason.NO_RESOURCE_ACCESS

    def test_unknown_role_is_denied_not_raised(self):
        result = self.resolver.resolve("root", "applications", "read")
        assert not result.allowed
        assert result.reason == DenialReason.UNKNOWN_ROLE

    def test_conditions_returned_not_enforced(self):
        result = self.resolver.resolve(Role.VENDOR_DEVELOPER, "applications", "create")
        assert result.allowed
        assert result.conditions == {"max_draft_applications": 5}

    def test_admin_role_wide_restriction_is_applied(self):
        """Role-wide cannot_vote blocks a grant added to the administrator."""
        matrix = dict(PERMISSION_MATRIX)
        matrix[Role.DHA_SYSTEM_ADMINISTRATOR] = {
            **PERMISSION_MATRIX[Role.DHA_SYSTEM_ADMINISTRATOR],
            "votes": ResourcePermission(actions=["vote", "read"], scope=Scope.ALL),
        }
        resolver = PermissionResolver(RoleCatalog(matrix=matrix))
        assert resolver.resolve(Role.DHA_SYSTEM_ADMINISTRATOR, "votes", "read").allowed
        result = resolver.resolve(Role.DHA_SYSTEM_ADMINISTRATOR, "votes", "vote")
        assert result.reason == DenialReason.ROLE_RESTRICTED

    def test_global_instance(self):
        assert permission_resolver.has_permission(Role.PUBLIC_USER, "registry", "search")


class TestRestrictionPrecedence:
    """A restriction always overrides a positive grant."""

    def setup_method(self):
        matrix = dict(PERMISSION_MATRIX)
        matrix[Role.DHA_CERTIFICATION_OFFICER] = {
            "applications": ResourcePermission(
                actions=["approve", "read"],
                scope=Scope.ALL,
                restrictions={"cannot_approve": True},
            ),
        }
        self.resolver = PermissionResolver(RoleCatalog(definitions=ROLE_DEFINITIONS, matrix=matrix))

    def test_restriction_overrides_grant(self):
        result = self.resolver.resolve(Role.DHA_CERTIFICATION_OFFICER, "applications", "approve")
        assert not result.allowed
        assert result.reason == DenialReason.ROLE_RESTRICTED

    def test_unrestricted_action_still_allowed(self):
        result = self.resolver.resolve(Role.DHA_CERTIFICATION_OFFICER, "applications", "read")
        assert result.allowed


class TestScopeRequirements:
    """Test context.check_scope handling."""

    def setup_method(self):
        self.resolver = PermissionResolver()

    def test_own_scope_requires_ownership(self):
        denied = self.resolver.resolve(
            Role.VENDOR_DEVELOPER, "applications", "read",
            ResolutionContext(check_scope=True, is_owner=False),
        )
        assert denied.reason == DenialReason.SCOPE_VIOLATION
        allowed = self.resolver.resolve(
            Role.VENDOR_DEVELOPER, "applications", "read",
            ResolutionContext(check_scope=True, is_owner=True),
        )
        assert allowed.allowed

    def test_scope_ignored_unless_requested(self):
        result = self.resolver.resolve(
            Role.VENDOR_DEVELOPER, "applications", "read", ResolutionContext(is_owner=False),
        )
        assert result.allowed

    def test_assigned_scope(self):
        result = self.resolver.resolve(
            Role.TESTING_LAB_STAFF, "tests", "execute",
            ResolutionContext(check_scope=True, is_assigned=False),
        )
        assert result.reason == DenialReason.SCOPE_VIOLATION

    def test_county_scope(self):
        same = ResolutionContext(check_scope=True, principal_county="Nairobi", resource_county="Nairobi")
        other = ResolutionContext(check_scope=True, principal_county="Nairobi", resource_county="Kisumu")
        assert self.resolver.resolve(Role.COUNTY_HEALTH_OFFICER, "incidents", "read", same).allowed
        result = self.resolver.resolve(Role.COUNTY_HEALTH_OFFICER, "incidents", "read", other)
        assert result.reason == DenialReason.SCOPE_VIOLATION

    @pytest.mark.parametrize("state, allowed", [
        ("certified", True),
        ("approved", True),
        ("under_review", False),
        (None, False),
    ])
    def test_certified_only_scope(self, state, allowed):
        result = self.resolver.resolve(
            Role.PUBLIC_USER, "registry", "read",
            ResolutionContext(check_scope=True, resource_state=state),
        )
        assert result.allowed is allowed


class TestNestedResources:
    """Per-category grants resolve through the same lookup."""

    def setup_method(self):
        self.resolver = PermissionResolver()

    def test_category_grant(self):
        result = self.resolver.resolve(
            Role.VENDOR_TECHNICAL_LEAD, "documents", "update", ResolutionContext(category="technical"),
        )
        assert result.allowed

    def test_read_only_category(self):
        result = self.resolver.resolve(
            Role.VENDOR_TECHNICAL_LEAD, "documents", "update", ResolutionContext(category="compliance"),
        )
        assert result.reason == DenialReason.ACTION_NOT_PERMITTED

    def test_missing_category(self):
        result = self.resolver.resolve(
            Role.VENDOR_COMPLIANCE_OFFICER, "documents", "read", ResolutionContext(category="security"),
        )
        assert result.reason == DenialReason.NO_RESOURCE_ACCESS

    def test_category_on_flat_resource_uses_flat_grant(self):
        result = self.resolver.resolve(
            Role.VENDOR_DEVELOPER, "documents", "create", ResolutionContext(category="technical"),
        )
        assert result.allowed


class TestConvenienceChecks:
    def setup_method(self):
        self.resolver = PermissionResolver()

    def test_has_any_permission(self):
        assert self.resolver.has_any_permission(
            Role.PUBLIC_USER, [("applications", "read"), ("registry", "read")],
        )
        assert not self.resolver.has_any_permission(Role.PUBLIC_USER, [("applications", "read")])

    def test_has_all_permissions(self):
        assert self.resolver.has_all_permissions(
            Role.DHA_CERTIFICATION_OFFICER, [("applications", "review"), ("reviews", "submit")],
        )
        assert not self.resolver.has_all_permissions(
            Role.DHA_CERTIFICATION_OFFICER, [("applications", "review"), ("votes", "create")],
        )

    def test_require_role(self):
        assert PermissionResolver.require_role("dha_system_administrator", [Role.DHA_SYSTEM_ADMINISTRATOR])
        assert not PermissionResolver.require_role("public_user", ["dha_system_administrator"])
        assert not PermissionResolver.require_role("ghost", ["dha_system_administrator"])
