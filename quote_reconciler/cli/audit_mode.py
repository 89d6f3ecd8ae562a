"""Audit mode: print the audit trail of a quotation as a table."""

import json
from typing import Optional

import typer
from rich.table import Table

from quote_reconciler.db import init_db
from quote_reconciler.db.repositories import audit_repo

from .shared import console


def audit(
    quotation_id: Optional[str] = typer.Argument(None, help="Quotation (or message) id; omit for recent entries"),
    action: Optional[str] = typer.Option(None, "--action", "-a", help="Only this action (without an id)"),
    limit: int = typer.Option(50, "--limit", "-n", min=1, max=500),
) -> None:
    """Show audit entries, newest first."""
    db = init_db()
    try:
        if quotation_id:
            entries = audit_repo.list_for_entity(db, quotation_id, limit)
        else:
            entries = audit_repo.list_recent(db, limit, action)
    finally:
        db.dispose()

    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return
    table = Table(title=f"Audit log ({len(entries)})")
    table.add_column("When", style="dim")
    table.add_column("Entity")
    table.add_column("Action", style="cyan")
    table.add_column("Actor")
    table.add_column("Data", overflow="fold")
    for e in entries:
        table.add_row(
            e.created_at.isoformat(timespec="seconds"),
            f"{e.entity_type}:{e.entity_id or '-'}",
            e.action,
            e.actor_name,
            json.dumps(e.data, ensure_ascii=False, default=str),
        )
    console.print(table)
