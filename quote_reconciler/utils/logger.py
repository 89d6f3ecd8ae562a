"""structlog setup: coloured console for operators, JSONL file for later analysis.

Event names are dotted ``component.event`` strings. Per-notification context
(Pub/Sub message id, mailbox, history id) is carried in contextvars so every
line written while handling one push can be correlated.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from quote_reconciler.config import LOG_FILE, LOG_LEVEL, VERBOSE_LOGGING

BoundLogger = structlog.stdlib.BoundLogger

# Libraries whose INFO lines are per-request noise next to reconciliation events.
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine", "uvicorn.access")

_configured = False


def _level() -> int:
    if VERBOSE_LOGGING:
        return logging.DEBUG
    if LOG_LEVEL.isdigit():
        return int(LOG_LEVEL)
    return getattr(logging, LOG_LEVEL, logging.INFO)


def _handler(handler: logging.Handler, renderer: Any, level: int, shared: list) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))
    return handler


def _configure() -> None:
    global _configured
    if _configured:
        return
    level = _level()
    shared = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(_handler(logging.StreamHandler(), structlog.dev.ConsoleRenderer(colors=True), level, shared))
    root.addHandler(
        _handler(logging.FileHandler(LOG_FILE, encoding="utf-8"), structlog.processors.JSONRenderer(), level, shared)
    )
    logging.captureWarnings(True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str = "quote_reconciler", **bindings: Any) -> BoundLogger:
    """Structured logger for ``name``; configures logging on first use."""
    _configure()
    logger = structlog.get_logger(name)
    return logger.bind(**bindings) if bindings else logger


@contextmanager
def log_context(**context: Any) -> Iterator[None]:
    """Bind ``context`` to every log line emitted inside the block, then restore."""
    tokens = structlog.contextvars.bind_contextvars(**{k: v for k, v in context.items() if v is not None})
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def preview(text: str | None, limit: int = 200) -> str:
    """Short single-line preview of a mail body or model answer for log events."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat[:limit] + ("…" if len(flat) > limit else "")
