"""Domain models: quotations, offers, inbound email, reconcile outcomes."""

from quote_reconciler.models.email import InboundMessage
from quote_reconciler.models.offer import (
    ExtractedItem,
    ExtractedOffer,
    ExtractionFailure,
    ExtractionResult,
    ParsedOffer,
)
from quote_reconciler.models.outcome import ReconcileOutcome
from quote_reconciler.models.quotation import (
    InvalidStatusTransition,
    QuotationItem,
    QuotationRecord,
    QuotationStatus,
)

__all__ = [
    "InboundMessage",
    "ExtractedItem",
    "ExtractedOffer",
    "ExtractionFailure",
    "ExtractionResult",
    "ParsedOffer",
    "ReconcileOutcome",
    "InvalidStatusTransition",
    "QuotationItem",
    "QuotationRecord",
    "QuotationStatus",
]
