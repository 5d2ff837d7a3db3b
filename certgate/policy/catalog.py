"""
Role Catalog — static lookup of role definitions and resource permissions.

The catalog is built once at process start from ROLE_DEFINITIONS and
PERMISSION_MATRIX and never changes afterwards. ``validate()`` is the startup
gate: a malformed matrix is a defect and must fail the process before any
request is served, never at request time.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping

from certgate.policy.matrix import (
    ADMIN_ROLES,
    APPROVAL_ROLES,
    DHA_ROLES,
    KNOWN_ACTIONS,
    PERMISSION_MATRIX,
    ROLE_DEFINITIONS,
    VENDOR_ROLES,
)
from certgate.policy.schema import ResourcePermission, Role, RoleDefinition, Scope

logger = logging.getLogger(__name__)

# Resources the orchestrator and lifecycle depend on; each must be granted to at least one role
REQUIRED_RESOURCES: frozenset[str] = frozenset({
    "applications", "users", "reviews", "tests", "test_results", "votes", "decisions",
})


class UnknownRoleError(LookupError):
    """Raised when a role identifier is not one of the nine defined roles."""

    def __init__(self, role: object) -> None:
        super().__init__(f"Unknown role: {role!r}")
        self.role = role


class CatalogError(Exception):
    """Raised by startup validation when the permission matrix is malformed."""


def coerce_role(role: str | Role) -> Role:
    """Convert a role identifier to a Role, raising UnknownRoleError otherwise."""
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        raise UnknownRoleError(role) from None


class RoleCatalog:
    """
    Immutable catalog of roles and their per-resource permissions.

    Safe to share across threads: nothing is mutated after ``__init__``.
    """

    def __init__(
        self,
        definitions: Mapping[Role, RoleDefinition] | None = None,
        matrix: Mapping[Role, Mapping[str, ResourcePermission]] | None = None,
    ) -> None:
        definitions = definitions if definitions is not None else ROLE_DEFINITIONS
        matrix = matrix if matrix is not None else PERMISSION_MATRIX
        self._definitions = MappingProxyType(dict(definitions))
        self._matrix = MappingProxyType(
            {role: MappingProxyType(dict(resources)) for role, resources in matrix.items()}
        )

    # ── Lookups ─────────────────────────────────────────────────

    @property
    def roles(self) -> list[Role]:
        return list(self._definitions)

    def definition(self, role: str | Role) -> RoleDefinition:
        role = coerce_role(role)
        try:
            return self._definitions[role]
        except KeyError:
            raise UnknownRoleError(role) from None

    def permissions_for(self, role: str | Role) -> Mapping[str, ResourcePermission]:
        """
        Return every resource permission held by a role.

        Raises:
            UnknownRoleError: If the role is not one of the nine defined roles.
        """
        role = coerce_role(role)
        try:
            return self._matrix[role]
        except KeyError:
            raise UnknownRoleError(role) from None

    def resource_permission(self, role: str | Role, resource: str) -> ResourcePermission | None:
        return self.permissions_for(role).get(resource)

    def resource_actions(self, role: str | Role, resource: str) -> list[str]:
        """All actions a role may perform on a resource, across nested categories."""
        permission = self.resource_permission(role, resource)
        if permission is None:
            return []
        return sorted(permission.all_actions())

    def role_restrictions(self, role: str | Role) -> Mapping[str, bool]:
        return self.definition(role).restrictions

    def display_name(self, role: str | Role) -> str:
        try:
            return self.definition(role).display_name
        except UnknownRoleError:
            return str(role)

    def portal(self, role: str | Role) -> str:
        try:
            return self.definition(role).portal
        except UnknownRoleError:
            return "/dashboard"

    def level(self, role: str | Role) -> int:
        try:
            return self.definition(role).level
        except UnknownRoleError:
            return 0

    # ── Role groups ─────────────────────────────────────────────

    @staticmethod
    def is_vendor_role(role: str | Role) -> bool:
        return role in VENDOR_ROLES

    @staticmethod
    def is_dha_role(role: str | Role) -> bool:
        return role in DHA_ROLES

    @staticmethod
    def is_admin_role(role: str | Role) -> bool:
        return role in ADMIN_ROLES

    @staticmethod
    def can_approve_certifications(role: str | Role) -> bool:
        return role in APPROVAL_ROLES

    # ── Startup validation ──────────────────────────────────────

    def validate(self, required_resources: Iterable[str] = REQUIRED_RESOURCES) -> None:
        """
        Check the catalog for defects.

        Raises:
            CatalogError: Listing every problem found.
        """
        problems: list[str] = []

        for role in Role:
            if role not in self._definitions:
                problems.append(f"role {role.value} has no definition")
            if role not in self._matrix:
                problems.append(f"role {role.value} has no permission table")

        for role, definition in self._definitions.items():
            if definition.role != role:
                problems.append(f"definition keyed {role.value} describes {definition.role.value}")

        for role, resources in self._matrix.items():
            for resource, permission in resources.items():
                problems.extend(self._check_permission(f"{role.value}.{resource}", permission))

        granted = {resource for resources in self._matrix.values() for resource in resources}
        for resource in sorted(set(required_resources) - granted):
            problems.append(f"resource {resource} has no registered permission table")

        if problems:
            raise CatalogError("Permission catalog invalid: " + "; ".join(problems))

        logger.info(
            "Role catalog validated: roles=%d resources=%d",
            len(self._matrix), len(granted),
        )

    def _check_permission(self, path: str, permission: ResourcePermission) -> list[str]:
        problems = []
        if not isinstance(permission.scope, Scope):
            problems.append(f"{path} has invalid scope {permission.scope!r}")
        unknown = permission.actions - KNOWN_ACTIONS
        if unknown:
            problems.append(f"{path} grants unknown actions {sorted(unknown)}")
        for action in permission.conditions:
            if action not in permission.actions:
                problems.append(f"{path} has conditions for ungranted action {action}")
        if not permission.actions and not permission.categories:
            problems.append(f"{path} grants nothing")
        for name, category in permission.categories.items():
            problems.extend(self._check_permission(f"{path}.{name}", category))
        return problems


# Process-wide catalog built from the shipped matrix
role_catalog = RoleCatalog()
