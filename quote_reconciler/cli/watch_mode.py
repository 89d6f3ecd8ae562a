"""Watch commands: register, renew and stop the Gmail push watch."""

from pathlib import Path
from typing import Optional

import typer

from quote_reconciler.context import AppContext
from quote_reconciler.mail_provider.errors import MailProviderError
from quote_reconciler.webhook.watch import WatchManager

from .shared import MOCK_INBOX_OPTION, console, logger, print_record, run_with_context


def setup_watch(mock_inbox: Optional[Path] = MOCK_INBOX_OPTION) -> None:
    """Register the Gmail watch on the configured Pub/Sub topic."""

    async def _setup(ctx: AppContext):
        return await WatchManager.from_context(ctx).setup()

    try:
        record = run_with_context(_setup, mock_inbox)
    except (ValueError, MailProviderError) as e:
        console.print(f"[red]Watch registration failed: {e}[/red]")
        logger.error("cli.setup_watch_failed", error=str(e))
        raise typer.Exit(1)
    print_record("Watch registered", record.model_dump())


def renew_watch(
    force: bool = typer.Option(False, "--force", "-f", help="Renew even if not due yet"),
    mock_inbox: Optional[Path] = MOCK_INBOX_OPTION,
) -> None:
    """Renew the Gmail watch (stop + watch). Intended for cron when the server's loop is off."""

    async def _renew(ctx: AppContext):
        manager = WatchManager.from_context(ctx)
        return await (manager.renew() if force else manager.renew_if_due())

    record = run_with_context(_renew, mock_inbox)
    if record is None:
        console.print("[yellow]Watch not renewed (not due, or renewal failed; see audit log).[/yellow]")
        return
    print_record("Watch renewed", record.model_dump())


def stop_watch(mock_inbox: Optional[Path] = MOCK_INBOX_OPTION) -> None:
    """Stop Gmail push notifications for the mailbox."""

    async def _stop(ctx: AppContext) -> None:
        await WatchManager.from_context(ctx).stop()

    try:
        run_with_context(_stop, mock_inbox)
    except MailProviderError as e:
        console.print(f"[red]Stopping the watch failed: {e}[/red]")
        raise typer.Exit(1)
    console.print("[green]Watch stopped.[/green]")
