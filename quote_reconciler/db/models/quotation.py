"""ORM model for quotations: one request for pricing sent to one supplier."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from quote_reconciler.db.base import Base, TimestampMixin


def _new_id() -> str:
    return uuid.uuid4().hex


class Quotation(Base, TimestampMixin):
    """A quotation plus the supplier reply merged into it.

    ``reply_message_id`` is unique so one email can be merged into at most one
    quotation; ``version`` is bumped on every write and guards the reply claim.
    """

    __tablename__ = "quotations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    supplier_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    supplier_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    reply_message_id: Mapped[Optional[str]] = mapped_column(String(256), unique=True, nullable=True)
    reply_from: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    reply_subject: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    reply_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_date: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    reply_received_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    ai_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_success: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    needs_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quoted_total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    delivery_date: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    delivery_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    payment_terms: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    has_delay: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delay_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    has_problems: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    problem_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supplier_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_action: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    ai_analysis: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    quoted_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
