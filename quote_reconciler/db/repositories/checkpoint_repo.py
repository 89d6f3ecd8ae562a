"""Watch checkpoint repository: history marker and watch registration per mailbox."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from quote_reconciler.db import Database
from quote_reconciler.db.models.checkpoint import WatchCheckpoint


class CheckpointRecord(BaseModel):
    mailbox: str
    last_history_id: Optional[str] = None
    watch_history_id: Optional[str] = None
    expiration: Optional[str] = None
    topic: Optional[str] = None
    last_renewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def parse_history_id(value: Optional[str]) -> Optional[int]:
    """History ids are decimal strings; anything else is treated as missing."""
    if value is None:
        return None
    text = str(value).strip()
    if not text.isdigit():
        return None
    return int(text)


def get_checkpoint(db: Database, mailbox: str) -> Optional[CheckpointRecord]:
    with db.session() as session:
        row = session.get(WatchCheckpoint, mailbox)
        return CheckpointRecord.model_validate(row) if row is not None else None


def advance(db: Database, mailbox: str, history_id: str) -> bool:
    """Move last_history_id forward to ``history_id``. Never moves it back.

    A stored value that is not a valid history id is overwritten. Returns True
    when the checkpoint changed.
    """
    new_value = parse_history_id(history_id)
    if new_value is None:
        return False
    with db.session() as session:
        row = session.get(WatchCheckpoint, mailbox, with_for_update=True)
        if row is None:
            session.add(WatchCheckpoint(mailbox=mailbox, last_history_id=str(new_value)))
            return True
        current = parse_history_id(row.last_history_id)
        if current is not None and current >= new_value:
            return False
        row.last_history_id = str(new_value)
        return True


def save_watch(
    db: Database,
    mailbox: str,
    *,
    history_id: str,
    expiration: Optional[str],
    topic: str,
    renewed_at: datetime,
) -> CheckpointRecord:
    """Store a watch registration; seeds last_history_id when none is stored yet."""
    with db.session() as session:
        row = session.get(WatchCheckpoint, mailbox)
        if row is None:
            row = WatchCheckpoint(mailbox=mailbox)
            session.add(row)
        if parse_history_id(row.last_history_id) is None:
            row.last_history_id = history_id
        row.watch_history_id = history_id
        row.expiration = expiration
        row.topic = topic
        row.last_renewed_at = renewed_at
        session.flush()
        return CheckpointRecord.model_validate(row)


def clear_watch(db: Database, mailbox: str) -> None:
    """Forget the watch registration, keeping the history checkpoint."""
    with db.session() as session:
        row = session.get(WatchCheckpoint, mailbox)
        if row is None:
            return
        row.expiration = None
        row.last_renewed_at = None
