"""Entry point: delegates to the CLI app."""

from rich.traceback import install

from quote_reconciler.cli import app
from quote_reconciler.utils.tracing import shutdown_tracing

if __name__ == "__main__":
    try:
        install(show_locals=False, max_frames=5, word_wrap=True)
        app()
    finally:
        shutdown_tracing()
