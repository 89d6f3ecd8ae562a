"""Replay mode: re-read mailbox history from a given marker and reconcile it."""

from pathlib import Path
from typing import Optional

import typer

from quote_reconciler.config import GMAIL_MAILBOX
from quote_reconciler.context import AppContext
from quote_reconciler.webhook.listener import NotificationListener
from quote_reconciler.webhook.watch import WatchManager

from .shared import MOCK_INBOX_OPTION, console, logger, print_record, run_with_context


def replay(
    start_history_id: str = typer.Argument(..., help="History id to read from (exclusive)"),
    mailbox: str = typer.Option(
        GMAIL_MAILBOX, "--mailbox", help="Checkpoint key to advance (default: the authorized mailbox address)"
    ),
    mock_inbox: Optional[Path] = MOCK_INBOX_OPTION,
) -> None:
    """Reconcile every message added after START_HISTORY_ID. Already merged messages are skipped."""
    log = logger.bind(command="replay", start_history_id=start_history_id)
    log.info("replay.start")

    async def _replay(ctx: AppContext):
        key = mailbox or await WatchManager.from_context(ctx).resolve_mailbox()
        return await NotificationListener.from_context(ctx).replay(key, start_history_id)

    result = run_with_context(_replay, mock_inbox)
    if result.status != "processed":
        console.print(f"[red]Replay {result.status}: {result.detail}[/red]")
        raise typer.Exit(1)
    print_record("Replay", result.summary())
