"""Map Gmail messages to provider-agnostic InboundMessage."""

from datetime import datetime, timezone
from typing import Optional

from quote_reconciler.mail_provider.gmail_models import GmailMessage
from quote_reconciler.models.email import InboundMessage
from quote_reconciler.utils.email_identity import normalize_address


def _internal_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def gmail_message_to_inbound(message: GmailMessage) -> InboundMessage:
    """Headers and metadata only; the body is decoded lazily by the engine."""
    sender = message.header("From")
    return InboundMessage(
        id=message.id,
        sender=sender,
        sender_address=normalize_address(sender) or None,
        subject=message.header("Subject"),
        date_header=message.header("Date"),
        body=None,
        snippet=message.snippet,
        payload=message.payload,
        received_at=_internal_date(message.internalDate) or datetime.now(timezone.utc),
    )
