"""Mail provider protocol (Gmail-like interface)."""

from typing import Protocol

from quote_reconciler.mail_provider.gmail_models import (
    GmailMessage,
    HistoryPage,
    MailboxProfile,
    SentMessage,
    WatchResponse,
)


class MailProvider(Protocol):
    """Abstract interface for watching a mailbox, reading its change history and sending mail."""

    async def get_profile(self) -> MailboxProfile:
        """Address of the authorized mailbox and its current history id."""
        ...

    async def watch(self, topic_name: str, label_ids: list[str]) -> WatchResponse:
        """Register (or re-register) push notifications for the mailbox to a Pub/Sub topic."""
        ...

    async def stop(self) -> None:
        """Stop push notifications for the mailbox."""
        ...

    async def list_history(
        self,
        start_history_id: str,
        page_token: str | None = None,
        max_results: int = 100,
        label_id: str | None = None,
    ) -> HistoryPage:
        """List messageAdded history records after start_history_id. Raises HistoryNotFoundError if too old."""
        ...

    async def get_message(self, message_id: str) -> GmailMessage | None:
        """Get a full message by id; None if it no longer exists."""
        ...

    async def send_message(
        self, to: str, subject: str, body: str, sender_name: str | None = None
    ) -> SentMessage:
        """Send a plain-text message from the mailbox."""
        ...
