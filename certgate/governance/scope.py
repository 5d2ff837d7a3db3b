"""
Scope Filter — translate a role's resolved scope into a data-access predicate.

The filter never queries storage. It returns a declarative ScopePredicate that
the caller applies to its own store (``as_dict()``) or evaluates in memory
(``matches()``). Five shapes exist, one per scope:

- own            → organization_id == principal org (creator_id == principal id without an org)
- assigned       → assignee_id == principal id OR assigned_team in principal teams
- county         → county == principal county
- certified_only → state in {approved, certified}
- all            → unrestricted
"""

from __future__ import annotations

import logging

from certgate.governance.permissions import CERTIFIED_STATES
from certgate.policy.catalog import RoleCatalog, UnknownRoleError, role_catalog
from certgate.policy.schema import Principal, Role, Scope, ScopePredicate

logger = logging.getLogger(__name__)

# Matches nothing; returned when the role holds no grant on the resource
DENY_ALL = ScopePredicate(operator="none")


class ScopeFilter:
    """Builds list/search predicates from the Role Catalog."""

    def __init__(self, catalog: RoleCatalog | None = None) -> None:
        self.catalog = catalog or role_catalog

    def filter_for(
        self,
        role: str | Role,
        resource: str,
        principal: Principal,
        category: str | None = None,
    ) -> ScopePredicate:
        """
        Return the predicate restricting which records of ``resource`` the
        principal may see.

        Unknown roles and resources without a grant yield ``DENY_ALL``.
        """
        try:
            permission = self.catalog.resource_permission(role, resource)
        except UnknownRoleError:
            return DENY_ALL
        if permission is None:
            return DENY_ALL
        if category is not None and permission.is_nested:
            permission = permission.categories.get(category)
            if permission is None:
                return DENY_ALL
        return self.predicate_for(permission.scope, principal)

    @staticmethod
    def predicate_for(scope: Scope, principal: Principal) -> ScopePredicate:
        if scope == Scope.ALL:
            return ScopePredicate(scope=scope)

        if scope == Scope.OWN:
            if principal.organization_id:
                return ScopePredicate(
                    scope=scope, field="organization_id", operator="eq",
                    values=(principal.organization_id,),
                )
            return ScopePredicate(
                scope=scope, field="creator_id", operator="eq", values=(principal.id,),
            )

        if scope == Scope.ASSIGNED:
            clauses = [
                ScopePredicate(scope=scope, field="assignee_id", operator="eq", values=(principal.id,)),
            ]
            if principal.team_ids:
                clauses.append(ScopePredicate(
                    scope=scope, field="assigned_team", operator="in",
                    values=tuple(principal.team_ids),
                ))
            if principal.lab_id:
                clauses.append(ScopePredicate(
                    scope=scope, field="assigned_lab_id", operator="eq", values=(principal.lab_id,),
                ))
            if len(clauses) == 1:
                return clauses[0]
            return ScopePredicate(scope=scope, any_of=tuple(clauses))

        if scope == Scope.COUNTY:
            if not principal.county:
                logger.warning("County-scoped principal %s has no county; denying all", principal.id)
                return ScopePredicate(scope=scope, operator="none")
            return ScopePredicate(
                scope=scope, field="county", operator="eq", values=(principal.county,),
            )

        if scope == Scope.CERTIFIED_ONLY:
            return ScopePredicate(
                scope=scope, field="state", operator="in", values=tuple(sorted(CERTIFIED_STATES)),
            )

        return DENY_ALL


# Global scope filter instance
scope_filter = ScopeFilter()
