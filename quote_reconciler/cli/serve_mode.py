"""Serve mode: run the FastAPI app (Pub/Sub push endpoint + API) with uvicorn."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from quote_reconciler.config import GMAIL_MAILBOX, GMAIL_PUBSUB_TOPIC, WEBHOOK_PORT
from quote_reconciler.context import build_context
from quote_reconciler.webhook.server import create_app

from .shared import MOCK_INBOX_OPTION, console, logger


def serve(
    port: int = typer.Option(WEBHOOK_PORT, "--port", "-p", help="Port for the server"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind host"),
    mock_inbox: Optional[Path] = MOCK_INBOX_OPTION,
) -> None:
    """Start the push listener and quotation API."""
    log = logger.bind(command="serve", port=port)
    log.info("serve.start", mock_inbox=str(mock_inbox) if mock_inbox else None)

    if not mock_inbox and not GMAIL_MAILBOX:
        console.print("[yellow]GMAIL_MAILBOX is not set; notifications for any mailbox will be accepted.[/yellow]")
    if not GMAIL_PUBSUB_TOPIC:
        console.print("[yellow]GMAIL_PUBSUB_TOPIC is not set; watch registration and renewal are disabled.[/yellow]")

    ctx = build_context(mock_inbox=mock_inbox) if mock_inbox else None
    app = create_app(context=ctx)

    console.print(f"[green]Starting server on http://{host}:{port}[/green]")
    console.print("[dim]Endpoints: POST /webhook/gmail, GET /health, GET /gmail/status, /quotations, /audit-logs[/dim]")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=15)
    except KeyboardInterrupt:
        console.print("\n[dim]Shutting down...[/dim]")
        sys.exit(0)
    finally:
        if ctx is not None:
            asyncio.run(ctx.aclose())
