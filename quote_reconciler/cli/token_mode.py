"""Token commands: authorize Gmail and seed the OAuth token cache."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import httpx
import typer

from quote_reconciler.auth.token_cache import DEFAULT_REDIRECT_URI, GMAIL_SCOPES, OAuthError, OAuthTokenProvider
from quote_reconciler.config import TOKEN_CACHE_PATH

from .shared import console, logger


def store_token(
    from_file: Optional[Path] = typer.Option(
        None, "--from-file", "-f", exists=True, dir_okay=False, help="JSON token response from Google's OAuth flow"
    ),
    access_token: Optional[str] = typer.Option(None, "--access-token"),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token"),
    expires_in: int = typer.Option(3600, "--expires-in", help="Access token lifetime in seconds"),
) -> None:
    """Save OAuth tokens so the service can read the mailbox; the refresh token keeps it working."""
    if from_file is not None:
        payload = json.loads(from_file.read_text(encoding="utf-8"))
    elif access_token or refresh_token:
        payload = {"access_token": access_token, "refresh_token": refresh_token, "expires_in": expires_in}
    else:
        console.print("[red]Pass --from-file or --access-token/--refresh-token.[/red]")
        raise typer.Exit(1)
    if not isinstance(payload, dict):
        console.print("[red]Token file must contain a JSON object.[/red]")
        raise typer.Exit(1)

    async def _save() -> dict:
        async with httpx.AsyncClient() as client:
            return OAuthTokenProvider(client).save_tokens(payload)

    data = asyncio.run(_save())
    logger.info("cli.token_stored", path=str(TOKEN_CACHE_PATH))
    console.print(
        f"[green]Tokens saved to {TOKEN_CACHE_PATH}[/green] "
        f"(refresh token: {'yes' if data.get('refresh_token') else 'no'})"
    )
    granted = set(str(data.get("scope") or "").split())
    missing = [s for s in GMAIL_SCOPES if s not in granted]
    if granted and missing:
        console.print(f"[yellow]Token is missing Gmail scopes: {', '.join(missing)}[/yellow]")


REDIRECT_URI_OPTION = typer.Option(
    DEFAULT_REDIRECT_URI, "--redirect-uri", help="Redirect URI registered for the OAuth client"
)


def auth_url(redirect_uri: str = REDIRECT_URI_OPTION) -> None:
    """Print the Google consent URL; pass the returned code to exchange-code."""

    async def _url() -> str:
        async with httpx.AsyncClient() as client:
            return OAuthTokenProvider(client).authorization_url(redirect_uri)

    console.print(asyncio.run(_url()))


def exchange_code(
    code: str = typer.Argument(..., help="Authorization code from the consent redirect"),
    redirect_uri: str = REDIRECT_URI_OPTION,
) -> None:
    """Exchange an authorization code for Gmail tokens and store them."""

    async def _exchange() -> dict:
        async with httpx.AsyncClient() as client:
            return await OAuthTokenProvider(client).exchange_code(code, redirect_uri)

    try:
        data = asyncio.run(_exchange())
    except OAuthError as e:
        logger.error("cli.code_exchange_failed", error=str(e))
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(
        f"[green]Gmail authorized; tokens saved to {TOKEN_CACHE_PATH}[/green] "
        f"(refresh token: {'yes' if data.get('refresh_token') else 'no'})"
    )
