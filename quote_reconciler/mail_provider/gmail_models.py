"""Pydantic models for the Gmail API resource shapes (subset we need)."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator


class MessagePartHeader(BaseModel):
    """Gmail MessagePartHeader."""

    name: str
    value: str = ""


class MessagePartBody(BaseModel):
    """Gmail MessagePartBody; ``data`` is url-safe base64."""

    attachmentId: Optional[str] = None
    size: int = 0
    data: Optional[str] = None


class MessagePart(BaseModel):
    """Gmail MessagePart (the payload tree of a message)."""

    partId: Optional[str] = None
    mimeType: str = ""
    filename: Optional[str] = None
    headers: list[MessagePartHeader] = []
    body: MessagePartBody = MessagePartBody()
    parts: list["MessagePart"] = []

    model_config = {"extra": "ignore"}


class GmailMessage(BaseModel):
    """Gmail users.messages resource (format=full)."""

    id: str
    threadId: Optional[str] = None
    labelIds: list[str] = []
    snippet: str = ""
    historyId: Optional[str] = None
    internalDate: Optional[str] = None  # epoch milliseconds as string
    payload: Optional[MessagePart] = None

    model_config = {"extra": "allow"}

    def header(self, name: str) -> str:
        """Return the first header value with this name (case-insensitive), or ''."""
        if self.payload is None:
            return ""
        wanted = name.lower()
        for h in self.payload.headers:
            if h.name.lower() == wanted:
                return h.value
        return ""


class MessageRef(BaseModel):
    """Minimal message reference inside a history record."""

    id: str
    threadId: Optional[str] = None
    labelIds: list[str] = []


class HistoryMessageAdded(BaseModel):
    message: MessageRef


class HistoryRecord(BaseModel):
    """Gmail users.history record; only messagesAdded is consumed."""

    id: str
    messagesAdded: list[HistoryMessageAdded] = []

    model_config = {"extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        return str(v)

    def message_ids(self) -> list[str]:
        return [added.message.id for added in self.messagesAdded]


class HistoryPage(BaseModel):
    """One page of users.history.list."""

    history: list[HistoryRecord] = []
    nextPageToken: Optional[str] = None
    historyId: Optional[str] = None

    @field_validator("historyId", mode="before")
    @classmethod
    def _history_id_to_str(cls, v):
        return None if v is None else str(v)


class WatchResponse(BaseModel):
    """users.watch response: current mailbox history id and expiry (epoch ms)."""

    history_id: str = Field(..., alias="historyId")
    expiration: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("history_id", "expiration", mode="before")
    @classmethod
    def _to_str(cls, v):
        return None if v is None else str(v)


class MailboxProfile(BaseModel):
    """users.getProfile response: the authorized address and its current history id."""

    email_address: str = Field(..., alias="emailAddress")
    history_id: Optional[str] = Field(None, alias="historyId")

    model_config = {"populate_by_name": True}

    @field_validator("history_id", mode="before")
    @classmethod
    def _to_str(cls, v):
        return None if v is None else str(v)


class SentMessage(BaseModel):
    """users.messages.send response."""

    id: str
    thread_id: Optional[str] = Field(None, alias="threadId")

    model_config = {"populate_by_name": True}
