"""
Decision Ledger Audit Tool — independent chain integrity verification.

Recomputes every hash in the decision ledger and verifies that no recorded
decision has been altered after the fact. Optionally lists recent entries or
the most recent denials.

Usage:
    python -m certgate.ledger.audit
    python -m certgate.ledger.audit --database-url postgresql+psycopg2://...
    python -m certgate.ledger.audit --verbose
    python -m certgate.ledger.audit --denials SelfApproval
"""

from __future__ import annotations

import argparse
import sys
import time

from rich.console import Console
from rich.table import Table

from certgate.config import settings
from certgate.ledger.service import DecisionLedger

console = Console()


def _entries_table(entries, title: str) -> Table:
    table = Table(title=title, show_lines=True)
    table.add_column("Seq", style="cyan", width=6)
    table.add_column("Principal", style="yellow", width=18)
    table.add_column("Role", width=28)
    table.add_column("Request", style="green", width=28)
    table.add_column("Outcome", width=26)
    table.add_column("Hash (first 16)", style="dim", width=18)
    table.add_column("Timestamp", width=20)

    for entry in entries:
        if entry.entry_type == "genesis":
            request, outcome = "genesis", "—"
        else:
            request = f"{entry.action} {entry.resource}"
            if entry.resource_id:
                request += f" [{entry.resource_id[:8]}]"
            outcome = "[green]allowed[/green]" if entry.allowed else f"[red]{entry.reason}[/red]"
        table.add_row(
            str(entry.sequence_number),
            entry.principal_id or "—",
            entry.role or "—",
            request,
            outcome,
            entry.entry_hash[:16] + "...",
            str(entry.timestamp)[:19],
        )
    return table


def run_audit(
    database_url: str,
    verbose: bool = False,
    denials: str | None = None,
    limit: int = 50,
) -> bool:
    """
    Run a full hash chain integrity audit.

    Args:
        database_url: SQLAlchemy connection string.
        verbose: Print the most recent entries if True.
        denials: Print recent denials with this reason code ("all" for every reason).
        limit: Maximum rows listed.

    Returns:
        True if the chain is valid, False otherwise.
    """
    console.print("\n[bold blue]═══ Decision Ledger Integrity Audit ═══[/bold blue]\n")

    ledger = DecisionLedger(database_url)

    count = ledger.get_entry_count()
    console.print(f"  Entries in ledger: [bold]{count}[/bold]")

    if count == 0:
        console.print("[yellow]⚠ Ledger is empty — no entries to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()

    is_valid, entries_verified, message = ledger.verify_chain()

    elapsed = time.time() - start_time

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Entries verified: [bold]{entries_verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at entry: {entries_verified}")
        console.print(f"  Reason: {message}")

    if verbose:
        entries = ledger.get_latest_entries(limit=limit)
        console.print(_entries_table(list(reversed(entries)), "Recent Decisions"))

    if denials:
        reason = None if denials == "all" else denials
        entries = ledger.get_denials(reason=reason, limit=limit)
        console.print(_entries_table(entries, f"Denials ({denials})"))

    console.print("\n[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="CertGate decision ledger integrity auditor"
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy connection string (defaults to CERTGATE_DATABASE_URL)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show recent entries",
    )
    parser.add_argument(
        "--denials",
        metavar="REASON",
        default=None,
        help="List recent denials for a reason code, or 'all'",
    )
    parser.add_argument("--limit", type=int, default=50, help="Maximum rows listed")
    args = parser.parse_args(argv)

    db_url = args.database_url or settings.database_url
    is_valid = run_audit(db_url, verbose=args.verbose, denials=args.denials, limit=args.limit)
    sys.exit(0 if is_valid else 1)


if __name__ == "__main__":
    main()
