"""
Permission Resolver — coarse allow/deny against the permission matrix.

Every request passes through ``resolve`` before any lifecycle or
separation-of-duties check. The resolver answers one question: may this role
perform this action on this resource, within the breadth its scope allows?
Outcomes are:

- ALLOWED: the action is granted → proceed, honouring the returned conditions
- DENIED: the grant is missing, restricted or out of scope → stop with a reason

Conditions attached to the action (draft limits, allowed statuses, ...) are
returned, not enforced: evaluating them requires the resource store, which the
resolver never touches.

Resolution order:
    1. Unknown role                       → UnknownRole
    2. No grant for the resource/category → NoResourceAccess
    3. Action not in the grant            → ActionNotPermitted
    4. ``cannot_<action>`` restriction    → RoleRestricted (overrides 3)
    5. Scope requirement not met          → ScopeViolation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from certgate.policy.catalog import RoleCatalog, UnknownRoleError, coerce_role, role_catalog
from certgate.policy.schema import (
    ApplicationState,
    DenialReason,
    ResourcePermission,
    Role,
    Scope,
)

logger = logging.getLogger(__name__)

# States visible under the certified_only scope
CERTIFIED_STATES: frozenset[str] = frozenset({
    ApplicationState.APPROVED.value,
    ApplicationState.CERTIFIED.value,
})


@dataclass
class ResolutionContext:
    """Relationship facts about the target resource, gathered by the caller."""

    check_scope: bool = False
    is_owner: bool = False
    is_assigned: bool = False
    principal_county: str | None = None
    resource_county: str | None = None
    resource_state: str | None = None
    category: str | None = None


@dataclass
class Resolution:
    """Result of resolving (role, resource, action)."""

    allowed: bool
    role: str
    resource: str
    action: str
    reason: DenialReason | None = None
    scope: Scope | None = None
    conditions: dict[str, Any] = field(default_factory=dict)
    message: str = ""

    @property
    def is_allowed(self) -> bool:
        return self.allowed


class PermissionResolver:
    """
    Resolves role grants from the Role Catalog.

    Stateless apart from the injected catalog; safe to share across threads.
    """

    def __init__(self, catalog: RoleCatalog | None = None) -> None:
        """
        Initialize the resolver.

        Args:
            catalog: Role catalog to resolve against. Defaults to the shipped matrix.
        """
        self.catalog = catalog or role_catalog

    def resolve(
        self,
        role: str | Role,
        resource: str,
        action: str,
        context: ResolutionContext | None = None,
    ) -> Resolution:
        """
        Resolve whether a role may perform an action on a resource.

        Args:
            role: The acting principal's role identifier.
            resource: Resource name as keyed in the permission matrix.
            action: Action being attempted.
            context: Ownership/assignment facts; scope is only checked when
                ``context.check_scope`` is set.

        Returns:
            Resolution with decision, scope and the action's conditions.
        """
        context = context or ResolutionContext()
        role_name = role.value if isinstance(role, Role) else str(role)

        def deny(reason: DenialReason, message: str, scope: Scope | None = None) -> Resolution:
            logger.debug(
                "Permission denied: role=%s resource=%s action=%s reason=%s",
                role_name, resource, action, reason.value,
            )
            return Resolution(
                allowed=False,
                role=role_name,
                resource=resource,
                action=action,
                reason=reason,
                scope=scope,
                message=message,
            )

        try:
            role_enum = coerce_role(role)
            permissions = self.catalog.permissions_for(role_enum)
        except UnknownRoleError:
            return deny(DenialReason.UNKNOWN_ROLE, f"Unknown role: {role_name}")

        permission = permissions.get(resource)
        if permission is None:
            return deny(
                DenialReason.NO_RESOURCE_ACCESS,
                f"Role '{role_name}' has no access to resource '{resource}'",
            )

        permission, label = self._select(permission, resource, context.category)
        if permission is None:
            return deny(
                DenialReason.NO_RESOURCE_ACCESS,
                f"Role '{role_name}' has no access to {label}",
            )

        # Positive grant
        if action not in permission.actions:
            allowed = ", ".join(sorted(permission.actions)) or "none"
            return deny(
                DenialReason.ACTION_NOT_PERMITTED,
                f"Action '{action}' is not permitted on {label} for role "
                f"'{role_name}'. Allowed actions: {allowed}",
                permission.scope,
            )

        # Explicit negative overrides the grant
        if permission.is_restricted(action) or self._role_restricted(role_enum, action):
            return deny(
                DenialReason.ROLE_RESTRICTED,
                f"Role '{role_name}' is restricted from '{action}' on {label}",
                permission.scope,
            )

        if context.check_scope and not self.scope_satisfied(permission.scope, context):
            return deny(
                DenialReason.SCOPE_VIOLATION,
                f"Resource is outside the '{permission.scope.value}' scope of role '{role_name}'",
                permission.scope,
            )

        return Resolution(
            allowed=True,
            role=role_name,
            resource=resource,
            action=action,
            scope=permission.scope,
            conditions=permission.conditions_for(action),
            message=f"Action '{action}' on {label} permitted for role '{role_name}'",
        )

    def _select(
        self, permission: ResourcePermission, resource: str, category: str | None
    ) -> tuple[ResourcePermission | None, str]:
        """Uniform lookup for flat and nested resources."""
        if category is None:
            return permission, f"'{resource}'"
        label = f"'{resource}/{category}'"
        if not permission.is_nested:
            return permission, label
        return permission.categories.get(category), label

    def _role_restricted(self, role: Role, action: str) -> bool:
        return bool(self.catalog.role_restrictions(role).get(f"cannot_{action}", False))

    @staticmethod
    def scope_satisfied(scope: Scope, context: ResolutionContext) -> bool:
        if scope == Scope.ALL:
            return True
        if scope == Scope.OWN:
            return context.is_owner
        if scope == Scope.ASSIGNED:
            return context.is_assigned
        if scope == Scope.COUNTY:
            return (
                context.principal_county is not None
                and context.principal_county == context.resource_county
            )
        if scope == Scope.CERTIFIED_ONLY:
            return context.resource_state in CERTIFIED_STATES
        return False

    # ── Convenience checks ──────────────────────────────────────

    def has_permission(self, role: str | Role, resource: str, action: str) -> bool:
        return self.resolve(role, resource, action).allowed

    def has_any_permission(
        self, role: str | Role, checks: Iterable[tuple[str, str]]
    ) -> bool:
        """Whether the role holds at least one of the (resource, action) pairs."""
        return any(self.has_permission(role, resource, action) for resource, action in checks)

    def has_all_permissions(
        self, role: str | Role, checks: Iterable[tuple[str, str]]
    ) -> bool:
        """Whether the role holds every one of the (resource, action) pairs."""
        return all(self.has_permission(role, resource, action) for resource, action in checks)

    @staticmethod
    def require_role(role: str | Role, allowed_roles: Iterable[str | Role]) -> bool:
        """Whether the role is one of ``allowed_roles``; unknown roles never match."""
        try:
            role = coerce_role(role)
        except UnknownRoleError:
            return False
        return role in {coerce_role(r) for r in allowed_roles}


# Global resolver instance (initialized with the shipped permission matrix)
permission_resolver = PermissionResolver()
