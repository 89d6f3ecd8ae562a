"""Shared CLI helpers: console, logger, running a coroutine against a fresh AppContext."""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console

from quote_reconciler.context import AppContext, build_context
from quote_reconciler.utils.logger import get_logger

T = TypeVar("T")

console = Console()
logger = get_logger("quote_reconciler.cli")

MOCK_INBOX_OPTION = typer.Option(
    None,
    "--mock-inbox",
    "-m",
    help="Use a JSON file of Gmail messages instead of the Gmail API",
    exists=True,
    dir_okay=False,
)


def run_with_context(fn: Callable[[AppContext], Awaitable[T]], mock_inbox: Optional[Path] = None) -> T:
    """Build a context, run ``fn`` in a new event loop, always close the context."""

    async def _run() -> T:
        ctx = build_context(mock_inbox=mock_inbox)
        try:
            return await fn(ctx)
        finally:
            await ctx.aclose()

    return asyncio.run(_run())


def print_record(title: str, data: dict[str, Any]) -> None:
    console.print(f"\n[bold]{title}[/bold]")
    for key, value in data.items():
        console.print(f"  {key}: {value}")
