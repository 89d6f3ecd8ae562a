"""Quotation status machine and read models."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class QuotationStatus(str, Enum):
    """Lifecycle of a quotation (request for supplier pricing)."""

    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    AWAITING = "awaiting"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Statuses in which a supplier reply is still expected.
OPEN_STATUSES: frozenset[QuotationStatus] = frozenset(
    {QuotationStatus.PENDING, QuotationStatus.SENT, QuotationStatus.AWAITING}
)
TERMINAL_STATUSES: frozenset[QuotationStatus] = frozenset(
    {QuotationStatus.CONFIRMED, QuotationStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[QuotationStatus, frozenset[QuotationStatus]] = {
    QuotationStatus.DRAFT: frozenset(
        {QuotationStatus.PENDING, QuotationStatus.SENT, QuotationStatus.CANCELLED}
    ),
    QuotationStatus.PENDING: frozenset(
        {
            QuotationStatus.SENT,
            QuotationStatus.AWAITING,
            QuotationStatus.QUOTED,
            QuotationStatus.CANCELLED,
        }
    ),
    QuotationStatus.SENT: frozenset(
        {QuotationStatus.AWAITING, QuotationStatus.QUOTED, QuotationStatus.CANCELLED}
    ),
    QuotationStatus.AWAITING: frozenset({QuotationStatus.QUOTED, QuotationStatus.CANCELLED}),
    QuotationStatus.QUOTED: frozenset({QuotationStatus.CONFIRMED, QuotationStatus.CANCELLED}),
    QuotationStatus.CONFIRMED: frozenset(),
    QuotationStatus.CANCELLED: frozenset(),
}


class InvalidStatusTransition(ValueError):
    """Raised when a status change is not in ALLOWED_TRANSITIONS."""

    def __init__(self, current: QuotationStatus, target: QuotationStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move quotation from {current.value!r} to {target.value!r}")


def can_transition(current: QuotationStatus, target: QuotationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: QuotationStatus, target: QuotationStatus) -> None:
    """Raise InvalidStatusTransition unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransition(current, target)


class QuotationItem(BaseModel):
    """One requested line item; quoted_* fields are filled from the supplier reply."""

    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "product_id", "productId"))
    name: str = Field("", validation_alias=AliasChoices("name", "product_name", "productName"))
    quantity: Optional[float] = Field(
        None, validation_alias=AliasChoices("quantity", "quantity_to_order", "quantityToOrder")
    )
    unit: str = ""
    quoted_unit_price: Optional[float] = None
    quoted_availability: Optional[float] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class QuotationRecord(BaseModel):
    """Read model of a quotation row (detached from the session)."""

    id: str
    status: QuotationStatus
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_email: Optional[str] = None
    items: list[QuotationItem] = []
    auto_generated: bool = False
    version: int = 1

    reply_message_id: Optional[str] = None
    reply_from: Optional[str] = None
    reply_subject: Optional[str] = None
    reply_body: Optional[str] = None
    reply_date: Optional[str] = None
    reply_received_at: Optional[datetime] = None

    ai_processed: bool = False
    ai_success: Optional[bool] = None
    needs_manual_review: bool = False
    quoted_total: Optional[float] = None
    delivery_date: Optional[str] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    has_delay: bool = False
    delay_reason: Optional[str] = None
    has_problems: bool = False
    problem_summary: Optional[str] = None
    supplier_notes: Optional[str] = None
    suggested_action: Optional[str] = None
    ai_analysis: Optional[dict[str, Any]] = None
    quoted_items: list[dict[str, Any]] = []

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES
