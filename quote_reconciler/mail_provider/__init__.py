"""Mail provider: Gmail-like interface, real REST client and JSON mock."""

from quote_reconciler.mail_provider.errors import (
    HistoryNotFoundError,
    MailAuthError,
    MailProviderError,
)
from quote_reconciler.mail_provider.gmail_models import GmailMessage, HistoryPage, WatchResponse
from quote_reconciler.mail_provider.protocol import MailProvider

__all__ = [
    "GmailMessage",
    "HistoryPage",
    "WatchResponse",
    "MailProvider",
    "MailProviderError",
    "MailAuthError",
    "HistoryNotFoundError",
]
