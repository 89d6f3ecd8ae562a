"""Provider-agnostic inbound email."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from quote_reconciler.mail_provider.gmail_models import MessagePart


class InboundMessage(BaseModel):
    """An email observed in the mailbox. ``id`` is the provider message id and the dedup key."""

    id: str
    sender: str = ""
    sender_address: Optional[str] = None
    subject: str = ""
    date_header: str = ""
    # None until decoded from payload.
    body: Optional[str] = None
    snippet: str = ""
    payload: Optional[MessagePart] = None
    received_at: Optional[datetime] = None
