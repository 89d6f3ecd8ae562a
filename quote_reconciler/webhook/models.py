"""Pydantic models for Pub/Sub push envelopes and listener results."""

import base64
import binascii
import json
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


class GmailNotification(BaseModel):
    """Decoded Pub/Sub data of a Gmail push: the mailbox and its new history id."""

    email_address: str = Field(..., alias="emailAddress")
    history_id: str = Field(..., alias="historyId")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("history_id", mode="before")
    @classmethod
    def _history_id_to_str(cls, v):
        return str(v)


class PubSubMessage(BaseModel):
    data: str = ""
    message_id: Optional[str] = Field(None, alias="messageId")
    publish_time: Optional[str] = Field(None, alias="publishTime")
    attributes: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "extra": "ignore"}


class PubSubPushEnvelope(BaseModel):
    """Request body of a Pub/Sub push delivery."""

    message: PubSubMessage
    subscription: Optional[str] = None

    model_config = {"extra": "ignore"}

    def decode_notification(self) -> GmailNotification:
        """Decode base64 JSON ``message.data``; raises ValueError when it is not a Gmail notification."""
        try:
            raw = base64.b64decode(self.message.data + "=" * (-len(self.message.data) % 4))
            payload = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError(f"Undecodable Pub/Sub data: {e}") from e
        if not isinstance(payload, dict):
            raise ValueError("Pub/Sub data is not a JSON object")
        try:
            return GmailNotification.model_validate(payload)
        except ValidationError as e:
            raise ValueError(f"Not a Gmail notification: {e.error_count()} invalid field(s)") from e


ListenerStatus = Literal["processed", "ignored", "auth_unavailable", "invalid"]


class ListenerResult(BaseModel):
    """Summary of one notification run."""

    status: ListenerStatus
    mailbox: Optional[str] = None
    start_history_id: Optional[str] = None
    history_id: Optional[str] = None
    messages_seen: int = 0
    outcomes: dict[str, int] = Field(default_factory=dict)
    failed: list[str] = Field(default_factory=list)
    abandoned: list[str] = Field(default_factory=list)
    truncated: bool = False
    checkpoint: Optional[str] = None
    detail: Optional[str] = None

    def count(self, status: str) -> None:
        self.outcomes[status] = self.outcomes.get(status, 0) + 1

    def summary(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)
