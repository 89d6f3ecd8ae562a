"""CLI commands: one module per mode (serve, watch, replay, audit, token)."""

from typer import Typer

from quote_reconciler.cli import audit_mode, replay_mode, serve_mode, token_mode, watch_mode
from quote_reconciler.utils.tracing import init_tracing

init_tracing()

app = Typer(help="Quotation reply reconciliation service")


def register_commands() -> None:
    """Register all CLI commands on the global app."""
    app.command()(serve_mode.serve)
    app.command(name="setup-watch")(watch_mode.setup_watch)
    app.command(name="renew-watch")(watch_mode.renew_watch)
    app.command(name="stop-watch")(watch_mode.stop_watch)
    app.command()(replay_mode.replay)
    app.command()(audit_mode.audit)
    app.command(name="store-token")(token_mode.store_token)
    app.command(name="auth-url")(token_mode.auth_url)
    app.command(name="exchange-code")(token_mode.exchange_code)


register_commands()
