"""Mock mail provider: a JSON inbox replayed as a Gmail-like change history."""

import base64
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from quote_reconciler.mail_provider.errors import HistoryNotFoundError
from quote_reconciler.mail_provider.gmail_models import (
    GmailMessage,
    HistoryMessageAdded,
    HistoryPage,
    HistoryRecord,
    MailboxProfile,
    MessageRef,
    SentMessage,
    WatchResponse,
)
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.mail_provider")

WATCH_TTL = timedelta(days=7)
MOCK_ADDRESS = "compras@padaria.com"


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def build_raw_message(
    message_id: str,
    sender: str,
    subject: str,
    body: str,
    *,
    html: bool = False,
    date: str = "",
    internal_date_ms: Optional[int] = None,
) -> dict[str, Any]:
    """Raw Gmail message dict (format=full) with a single-part body."""
    if internal_date_ms is None:
        internal_date_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    headers = [{"name": "From", "value": sender}, {"name": "Subject", "value": subject}]
    if date:
        headers.append({"name": "Date", "value": date})
    return {
        "id": message_id,
        "threadId": message_id,
        "labelIds": ["INBOX"],
        "snippet": " ".join(body.split())[:100],
        "internalDate": str(internal_date_ms),
        "payload": {
            "mimeType": "text/html" if html else "text/plain",
            "headers": headers,
            "body": {"size": len(body), "data": _b64(body)},
        },
    }


class GmailMockProvider:
    """In-memory mailbox: each message added gets the next history id."""

    def __init__(
        self,
        inbox_path: Optional[Path] = None,
        messages: Optional[list[dict[str, Any]]] = None,
        start_history_id: int = 1000,
        email_address: str = MOCK_ADDRESS,
    ):
        self.email_address = email_address
        self._history_id = start_history_id
        # History before this id is treated as expired.
        self.min_history_id = start_history_id
        self._records: list[tuple[int, str]] = []
        self._messages: dict[str, GmailMessage] = {}
        self.watching = False
        self.watch_calls = 0
        self.stop_calls = 0
        self.sent: list[dict[str, Any]] = []
        if inbox_path is not None:
            self._load_inbox(Path(inbox_path))
        for raw in messages or []:
            self.add_message(raw)
        logger.info("mail_provider.init", provider="mock", message_count=len(self._messages))

    def _load_inbox(self, path: Path) -> None:
        if not path.exists():
            logger.warning("mail_provider.inbox_missing", inbox_path=str(path))
            return
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        items = data if isinstance(data, list) else data.get("messages", [])
        for item in items:
            self.add_message(item)
        logger.info("mail_provider.inbox_loaded", inbox_path=str(path), message_count=len(items))

    @property
    def current_history_id(self) -> str:
        return str(self._history_id)

    def add_message(self, raw: dict[str, Any]) -> str:
        """Deliver a message; returns the new mailbox history id."""
        message = GmailMessage.model_validate(raw)
        self._history_id += 1
        message.historyId = str(self._history_id)
        self._messages[message.id] = message
        self._records.append((self._history_id, message.id))
        return str(self._history_id)

    def remove_message(self, message_id: str) -> None:
        """Delete a message but keep its history record (get_message then returns None)."""
        self._messages.pop(message_id, None)

    async def watch(self, topic_name: str, label_ids: list[str]) -> WatchResponse:
        self.watching = True
        self.watch_calls += 1
        expiration = datetime.now(timezone.utc) + WATCH_TTL
        logger.info("mail_provider.watch_registered", topic=topic_name, label_ids=label_ids)
        return WatchResponse(
            history_id=self.current_history_id,
            expiration=str(int(expiration.timestamp() * 1000)),
        )

    async def stop(self) -> None:
        self.watching = False
        self.stop_calls += 1
        logger.info("mail_provider.watch_stopped")

    async def list_history(
        self,
        start_history_id: str,
        page_token: str | None = None,
        max_results: int = 100,
        label_id: str | None = None,
    ) -> HistoryPage:
        try:
            start = int(start_history_id)
        except (TypeError, ValueError):
            raise HistoryNotFoundError(f"Invalid history id {start_history_id!r}") from None
        if start < self.min_history_id:
            raise HistoryNotFoundError(f"History id {start_history_id} is no longer available")
        newer = [r for r in self._records if r[0] > start]
        offset = int(page_token) if page_token else 0
        chunk = newer[offset : offset + max_results]
        next_offset = offset + len(chunk)
        return HistoryPage(
            history=[
                HistoryRecord(
                    id=str(hid),
                    messagesAdded=[HistoryMessageAdded(message=MessageRef(id=mid))],
                )
                for hid, mid in chunk
            ],
            nextPageToken=str(next_offset) if next_offset < len(newer) else None,
            historyId=self.current_history_id,
        )

    async def get_message(self, message_id: str) -> GmailMessage | None:
        message = self._messages.get(message_id)
        if message is None:
            logger.debug("mail_provider.message_not_found", message_id=message_id)
            return None
        return message.model_copy(deep=True)

    async def get_profile(self) -> MailboxProfile:
        return MailboxProfile(email_address=self.email_address, history_id=self.current_history_id)

    async def send_message(
        self, to: str, subject: str, body: str, sender_name: str | None = None
    ) -> SentMessage:
        """Record the message instead of sending it."""
        message_id = f"sent-{len(self.sent) + 1}"
        self.sent.append(
            {"id": message_id, "to": to, "subject": subject, "body": body, "sender_name": sender_name}
        )
        logger.info("mail_provider.message_sent", message_id=message_id, to=to)
        return SentMessage(id=message_id, thread_id=message_id)
