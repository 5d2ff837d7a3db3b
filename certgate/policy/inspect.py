"""
Policy Inspector — print and validate the role catalog and lifecycle tables.

Usage:
    python -m certgate.policy.inspect                  # roles + validation
    python -m certgate.policy.inspect --role public_user
    python -m certgate.policy.inspect --lifecycle application
"""

from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.table import Table

from certgate.governance.lifecycle import lifecycle
from certgate.policy.catalog import CatalogError, UnknownRoleError, role_catalog
from certgate.policy.schema import LifecycleDomain, Role

console = Console()


def roles_table() -> Table:
    table = Table(title="Roles", show_lines=False)
    table.add_column("Role", style="cyan")
    table.add_column("Display name")
    table.add_column("Level", justify="right")
    table.add_column("Portal", style="dim")
    table.add_column("Restrictions", style="red")

    for role in sorted(role_catalog.roles, key=role_catalog.level, reverse=True):
        definition = role_catalog.definition(role)
        restrictions = ", ".join(k for k, v in definition.restrictions.items() if v)
        table.add_row(
            role.value, definition.display_name, str(definition.level),
            definition.portal, restrictions or "—",
        )
    return table


def matrix_table(role: Role) -> Table:
    table = Table(title=f"Permissions — {role_catalog.display_name(role)}", show_lines=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Actions", style="green")
    table.add_column("Scope")
    table.add_column("Conditions", style="yellow")

    for resource, permission in sorted(role_catalog.permissions_for(role).items()):
        rows = [(resource, permission)]
        rows += [(f"  {resource}/{name}", p) for name, p in sorted(permission.categories.items())]
        for label, p in rows:
            conditions = "; ".join(
                f"{action}: {', '.join(f'{k}={v}' for k, v in cond.items())}"
                for action, cond in sorted(p.conditions.items())
            )
            table.add_row(
                label,
                ", ".join(sorted(p.actions)) or "—",
                p.scope.value,
                conditions or "—",
            )
    return table


def lifecycle_table(domain: LifecycleDomain) -> Table:
    table = Table(title=f"Lifecycle — {domain.value}", show_lines=True)
    table.add_column("State", style="cyan")
    table.add_column("Category")
    table.add_column("Next states", style="green")
    table.add_column("Gated targets", style="yellow")

    for state in lifecycle.states(domain):
        gated = []
        for target in lifecycle.valid_next_states(domain, state):
            roles = sorted({r.value for gate in lifecycle.required_roles_for(domain, state, target) for r in gate})
            if roles:
                gated.append(f"{target} ({', '.join(roles)})")
        category = lifecycle.state_category(domain, state)
        table.add_row(
            state,
            category.value if category else "?",
            ", ".join(lifecycle.valid_next_states(domain, state)) or "— terminal —",
            "\n".join(gated) or "—",
        )
    return table


def validate() -> bool:
    ok = True
    try:
        role_catalog.validate()
        console.print("[bold green]✓[/bold green] Role catalog valid")
    except CatalogError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        ok = False
    try:
        lifecycle.validate_table()
        console.print("[bold green]✓[/bold green] Lifecycle tables valid")
    except CatalogError as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        ok = False
    return ok


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Inspect the CertGate permission catalog")
    parser.add_argument("--role", help="Print the permission matrix for one role")
    parser.add_argument(
        "--lifecycle",
        choices=[d.value for d in LifecycleDomain],
        help="Print the transition table for one lifecycle",
    )
    args = parser.parse_args(argv)

    if args.role:
        try:
            console.print(matrix_table(Role(args.role)))
        except (ValueError, UnknownRoleError):
            console.print(f"[red]Unknown role: {args.role}[/red]")
            sys.exit(2)
    elif args.lifecycle:
        console.print(lifecycle_table(LifecycleDomain(args.lifecycle)))
    else:
        console.print(roles_table())

    sys.exit(0 if validate() else 1)


if __name__ == "__main__":
    main()
