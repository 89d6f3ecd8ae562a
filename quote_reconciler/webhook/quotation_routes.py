"""Quotation API routes: create, low-stock trigger, send request, status change, manual reply."""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from quote_reconciler.db.repositories import quotation_repo
from quote_reconciler.db.repositories.quotation_repo import ConcurrentModification, QuotationNotFound
from quote_reconciler.mail_provider.errors import MailAuthError, MailProviderError
from quote_reconciler.models.quotation import InvalidStatusTransition, QuotationItem, QuotationStatus
from quote_reconciler.outreach import MissingSupplierEmail, send_quotation_request
from quote_reconciler.sourcing import LowStockRequest, create_low_stock_quotation

router = APIRouter(prefix="/quotations", tags=["quotations"])


class CreateQuotationBody(BaseModel):
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_email: str
    items: list[QuotationItem] = Field(default_factory=list)
    status: QuotationStatus = QuotationStatus.DRAFT
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class StatusChangeBody(BaseModel):
    status: QuotationStatus
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class SendQuotationBody(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = None
    sender_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class ManualReplyBody(BaseModel):
    sender: str = Field(..., alias="from")
    subject: str = ""
    body: str
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    model_config = {"populate_by_name": True}


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, QuotationNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidStatusTransition, ConcurrentModification)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, MissingSupplierEmail):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, MailAuthError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, MailProviderError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def create_quotation(body: CreateQuotationBody, request: Request) -> dict[str, Any]:
    """Create a quotation; only draft, pending or sent are valid starting statuses."""
    if body.status not in (QuotationStatus.DRAFT, QuotationStatus.PENDING, QuotationStatus.SENT):
        raise HTTPException(status_code=422, detail=f"Cannot create a quotation as {body.status.value!r}")
    ctx = request.app.state.context
    record = await asyncio.to_thread(
        quotation_repo.create_quotation,
        ctx.db,
        supplier_id=body.supplier_id,
        supplier_name=body.supplier_name,
        supplier_email=body.supplier_email,
        items=body.items,
        status=body.status,
        actor=body.user_id,
        actor_name=body.user_name,
    )
    return record.model_dump(mode="json")


@router.post("/low-stock")
async def low_stock(body: LowStockRequest, request: Request) -> dict[str, Any]:
    """Stock update hook: creates a draft quotation when the product is at or below its minimum."""
    ctx = request.app.state.context
    result = await asyncio.to_thread(create_low_stock_quotation, ctx.db, body)
    return result.model_dump(mode="json")


@router.get("/{quotation_id}")
async def get_quotation(quotation_id: str, request: Request) -> dict[str, Any]:
    ctx = request.app.state.context
    try:
        record = await asyncio.to_thread(quotation_repo.get_quotation, ctx.db, quotation_id)
    except QuotationNotFound as e:
        raise _http_error(e)
    return record.model_dump(mode="json")


@router.post("/{quotation_id}/send")
async def send_quotation(
    quotation_id: str, request: Request, body: Optional[SendQuotationBody] = None
) -> dict[str, Any]:
    """Email the quotation request to the supplier and mark it as sent."""
    ctx = request.app.state.context
    body = body or SendQuotationBody()
    try:
        result = await send_quotation_request(
            ctx.db,
            ctx.provider,
            quotation_id,
            subject=body.subject,
            body=body.body,
            sender_name=body.sender_name,
            actor=body.user_id,
            actor_name=body.user_name,
        )
    except (
        QuotationNotFound,
        InvalidStatusTransition,
        ConcurrentModification,
        MissingSupplierEmail,
        MailProviderError,
    ) as e:
        raise _http_error(e)
    return result.model_dump(mode="json")


@router.post("/{quotation_id}/status")
async def change_status(quotation_id: str, body: StatusChangeBody, request: Request) -> dict[str, Any]:
    ctx = request.app.state.context
    try:
        record = await asyncio.to_thread(
            quotation_repo.change_status,
            ctx.db,
            quotation_id,
            body.status,
            actor=body.user_id,
            actor_name=body.user_name,
        )
    except (QuotationNotFound, InvalidStatusTransition, ConcurrentModification) as e:
        raise _http_error(e)
    return record.model_dump(mode="json")


@router.post("/{quotation_id}/reply")
async def manual_reply(quotation_id: str, body: ManualReplyBody, request: Request) -> dict[str, Any]:
    """Process a supplier reply received outside the watched mailbox."""
    engine = request.app.state.engine
    try:
        outcome = await engine.apply_manual_reply(
            quotation_id,
            sender=body.sender,
            subject=body.subject,
            body=body.body,
            message_id=body.message_id,
            actor=body.user_id,
            actor_name=body.user_name,
        )
    except (QuotationNotFound, InvalidStatusTransition, ConcurrentModification) as e:
        raise _http_error(e)
    return outcome.model_dump(mode="json")
