"""Quotation requests: mail the supplier and mark the quotation as sent.

The message goes out before the status change, so a quotation is never
``sent`` without a message having left the mailbox. If the status change then
loses a race, the EMAIL_SENT audit entry still records the delivery.
"""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from quote_reconciler.config import MAIL_SENDER_NAME
from quote_reconciler.db import Database
from quote_reconciler.db.repositories import audit_repo, quotation_repo
from quote_reconciler.mail_provider.protocol import MailProvider
from quote_reconciler.models.quotation import QuotationItem, QuotationRecord, QuotationStatus, ensure_transition
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.outreach")


class MissingSupplierEmail(ValueError):
    """The quotation has no supplier address to send to."""


class SendResult(BaseModel):
    quotation: QuotationRecord
    message_id: str
    to: str
    subject: str


def _item_line(item: QuotationItem) -> str:
    parts = [f"- {item.name}:"]
    if item.quantity is not None:
        parts.append(f"{item.quantity:g}")
    parts.append(item.unit or "unidades")
    return " ".join(parts)


def default_subject(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Solicitação de Cotação - {now.strftime('%d/%m/%Y')}"


def default_body(quotation: QuotationRecord, sender_name: str) -> str:
    items = "\n".join(_item_line(item) for item in quotation.items)
    return (
        f"Prezado(a) {quotation.supplier_name or 'fornecedor'},\n\n"
        f"Solicitamos cotação para os seguintes itens:\n{items}\n\n"
        "Por favor, informe o preço unitário e o prazo de entrega.\n"
        "Aguardamos retorno.\n\n"
        f"Atenciosamente,\n{sender_name}"
    )


async def send_quotation_request(
    db: Database,
    provider: MailProvider,
    quotation_id: str,
    *,
    subject: Optional[str] = None,
    body: Optional[str] = None,
    sender_name: Optional[str] = None,
    actor: Optional[str] = None,
    actor_name: Optional[str] = None,
) -> SendResult:
    """Send the request for a draft or pending quotation, then move it to ``sent``.

    Raises QuotationNotFound, InvalidStatusTransition, MissingSupplierEmail,
    MailProviderError (nothing changed) or ConcurrentModification (mail sent,
    status not moved).
    """
    quotation = await asyncio.to_thread(quotation_repo.get_quotation, db, quotation_id)
    ensure_transition(quotation.status, QuotationStatus.SENT)
    to = (quotation.supplier_email or "").strip()
    if not to:
        raise MissingSupplierEmail(f"Quotation {quotation_id!r} has no supplier email")

    sender_name = sender_name or actor_name or MAIL_SENDER_NAME
    subject = subject or default_subject()
    body = body or default_body(quotation, sender_name)
    sent = await provider.send_message(to, subject, body, sender_name=sender_name)
    await asyncio.to_thread(
        audit_repo.record,
        db,
        entity_type=audit_repo.ENTITY_QUOTATION,
        entity_id=quotation_id,
        action=audit_repo.ACTION_EMAIL_SENT,
        data={"to": to, "subject": subject, "messageId": sent.id, "supplierName": quotation.supplier_name},
        actor=actor,
        actor_name=actor_name,
    )
    updated = await asyncio.to_thread(
        quotation_repo.change_status,
        db,
        quotation_id,
        QuotationStatus.SENT,
        actor=actor,
        actor_name=actor_name,
    )
    logger.info("outreach.quotation_sent", quotation_id=quotation_id, message_id=sent.id, to=to)
    return SendResult(quotation=updated, message_id=sent.id, to=to, subject=subject)
