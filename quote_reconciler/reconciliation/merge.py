"""Merge an extracted offer into a quotation (pure functions, no I/O).

Item mapping: a requested item matches the first extracted item whose name
contains it or is contained by it (case-insensitive); otherwise the extracted
item at the same position. Similarly named items in one request can map to
the same answer line; such quotations are worth a manual look.
"""

from typing import Any, Optional, Sequence

from quote_reconciler.models.email import InboundMessage
from quote_reconciler.models.offer import ExtractedItem, ExtractionResult
from quote_reconciler.models.quotation import QuotationItem, QuotationRecord, QuotationStatus
from quote_reconciler.utils.email_identity import MatchKind


def _names_overlap(requested: str, extracted: str) -> bool:
    a, b = requested.strip().lower(), extracted.strip().lower()
    if not a or not b:
        return False
    return a in b or b in a


def match_items(
    requested: Sequence[QuotationItem], extracted: Sequence[ExtractedItem]
) -> list[Optional[ExtractedItem]]:
    """For each requested item, the extracted line it maps to (or None)."""
    matches: list[Optional[ExtractedItem]] = []
    for index, item in enumerate(requested):
        found = next((e for e in extracted if _names_overlap(item.name, e.name)), None)
        if found is None and index < len(extracted):
            found = extracted[index]
        matches.append(found)
    return matches


def merge_items(
    requested: Sequence[QuotationItem], matches: Sequence[Optional[ExtractedItem]]
) -> list[dict[str, Any]]:
    """Requested items with quoted price/availability filled in; existing values kept when missing."""
    merged = []
    for item, match in zip(requested, matches):
        updated = item.model_copy()
        if match is not None:
            if match.unitPrice is not None:
                updated.quoted_unit_price = match.unitPrice
            if match.availableQuantity is not None:
                updated.quoted_availability = match.availableQuantity
        merged.append(updated.model_dump(exclude_none=True))
    return merged


def compute_total(
    total_quote: Optional[float],
    requested: Sequence[QuotationItem],
    extracted: Sequence[ExtractedItem],
    matches: Sequence[Optional[ExtractedItem]],
) -> Optional[float]:
    """Model total if given, else sum of price x quantity over priced lines, rounded to cents.

    Quantity is the supplier's available quantity, else the quantity requested
    for the item the line was mapped to. None when nothing could be priced.
    """
    if total_quote is not None:
        return round(total_quote, 2)
    requested_qty: dict[int, Optional[float]] = {}
    for item, match in zip(requested, matches):
        if match is not None and id(match) not in requested_qty:
            requested_qty[id(match)] = item.quantity
    total = 0.0
    priced = False
    for line in extracted:
        if line.unitPrice is None:
            continue
        qty = line.availableQuantity
        if qty is None:
            qty = requested_qty.get(id(line))
        if qty is None:
            continue
        total += line.unitPrice * qty
        priced = True
    return round(total, 2) if priced else None


def needs_manual_review(result: ExtractionResult) -> bool:
    return not result.success or not result.offer.hasQuote


def build_reply_fields(
    quotation: QuotationRecord, message: InboundMessage, result: ExtractionResult
) -> dict[str, Any]:
    """Column values written when ``message`` is merged into ``quotation``.

    Any reply moves the quotation to ``quoted``, even when extraction failed;
    ``needs_manual_review`` flags those.
    """
    offer = result.offer
    matches = match_items(quotation.items, offer.items)
    analysis = offer.model_dump()
    if not result.success:
        analysis["error"] = result.error
    return {
        "status": QuotationStatus.QUOTED.value,
        "reply_from": message.sender,
        "reply_subject": message.subject,
        "reply_body": message.body or "",
        "reply_date": message.date_header,
        "reply_received_at": message.received_at,
        "ai_processed": True,
        "ai_success": result.success,
        "needs_manual_review": needs_manual_review(result),
        "quoted_total": compute_total(offer.totalQuote, quotation.items, offer.items, matches),
        "delivery_date": offer.deliveryDate,
        "delivery_days": offer.deliveryDays,
        "payment_terms": offer.paymentTerms,
        "has_delay": offer.hasDelay,
        "delay_reason": offer.delayReason,
        "has_problems": offer.hasProblems,
        "problem_summary": offer.problemSummary,
        "supplier_notes": offer.supplierNotes,
        "suggested_action": offer.suggestedAction,
        "ai_analysis": analysis,
        "items": merge_items(quotation.items, matches),
        "quoted_items": [line.model_dump() for line in offer.items],
    }


def build_audit_data(
    quotation: QuotationRecord,
    message: InboundMessage,
    result: ExtractionResult,
    fields: dict[str, Any],
    match_kind: Optional[MatchKind],
) -> dict[str, Any]:
    """Payload of the EMAIL_PROCESSED_AI audit entry."""
    return {
        "messageId": message.id,
        "from": message.sender,
        "subject": message.subject,
        "bodyLength": len(message.body or ""),
        "matchType": match_kind,
        "aiSuccess": result.success,
        "previousStatus": quotation.status.value,
        "newStatus": fields["status"],
        "quotedTotal": fields["quoted_total"],
        "deliveryDate": fields["delivery_date"],
        "hasProblems": fields["has_problems"],
        "itemsExtracted": len(result.offer.items),
        "needsManualReview": fields["needs_manual_review"],
    }
