"""ORM model for the per-mailbox history checkpoint and watch registration."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from quote_reconciler.db.base import Base, TimestampMixin


class WatchCheckpoint(Base, TimestampMixin):
    """``last_history_id`` is the highest history marker fully handled for the mailbox."""

    __tablename__ = "watch_checkpoints"

    mailbox: Mapped[str] = mapped_column(String(320), primary_key=True)
    last_history_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    watch_history_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    expiration: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    last_renewed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
