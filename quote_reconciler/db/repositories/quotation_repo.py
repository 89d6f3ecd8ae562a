"""Quotation repository: create, look up, list reply candidates, change status, claim a reply.

All writes bump ``version`` and insert their audit entry in the same
transaction. Functions return detached ``QuotationRecord`` views.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from quote_reconciler.db import Database
from quote_reconciler.db.models.quotation import Quotation
from quote_reconciler.db.repositories import audit_repo
from quote_reconciler.models.quotation import (
    OPEN_STATUSES,
    QuotationItem,
    QuotationRecord,
    QuotationStatus,
    ensure_transition,
)
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.quotation_repo")


class QuotationNotFound(LookupError):
    def __init__(self, quotation_id: str):
        self.quotation_id = quotation_id
        super().__init__(f"Quotation {quotation_id!r} not found")


class ConcurrentModification(RuntimeError):
    """The quotation changed between read and conditional write."""


class ClaimResult(str, Enum):
    APPLIED = "applied"
    # Conditional update matched no row: status, version or reply stamp changed underneath us.
    CONFLICT = "conflict"
    # Another quotation already carries this reply_message_id.
    DUPLICATE = "duplicate"


def _values(status: Any) -> list[str]:
    return [s.value if isinstance(s, QuotationStatus) else str(s) for s in status]


def create_quotation(
    db: Database,
    *,
    supplier_id: Optional[str],
    supplier_name: Optional[str],
    supplier_email: Optional[str],
    items: Iterable[QuotationItem | dict[str, Any]],
    status: QuotationStatus = QuotationStatus.DRAFT,
    auto_generated: bool = False,
    created_at: Optional[datetime] = None,
    actor: Optional[str] = None,
    actor_name: Optional[str] = None,
    audit_action: str = audit_repo.ACTION_CREATE,
    audit_data: Optional[dict[str, Any]] = None,
) -> QuotationRecord:
    """Insert a quotation and its creation audit entry."""
    item_rows = [
        (i if isinstance(i, QuotationItem) else QuotationItem.model_validate(i)).model_dump(
            exclude_none=True
        )
        for i in items
    ]
    with db.session() as session:
        row = Quotation(
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            supplier_email=(supplier_email or "").strip().lower() or None,
            status=QuotationStatus(status).value,
            items=item_rows,
            auto_generated=auto_generated,
        )
        if created_at is not None:
            row.created_at = created_at
            row.updated_at = created_at
        session.add(row)
        session.flush()
        data = {
            "supplierName": supplier_name,
            "status": row.status,
            "itemCount": len(item_rows),
        }
        data.update(audit_data or {})
        audit_repo.add_entry(
            session,
            entity_type=audit_repo.ENTITY_QUOTATION,
            entity_id=row.id,
            action=audit_action,
            data=data,
            actor=actor,
            actor_name=actor_name,
        )
        session.flush()
        return QuotationRecord.model_validate(row)


def get_quotation(db: Database, quotation_id: str) -> QuotationRecord:
    with db.session() as session:
        row = session.get(Quotation, quotation_id)
        if row is None:
            raise QuotationNotFound(quotation_id)
        return QuotationRecord.model_validate(row)


def find_by_reply_message_id(db: Database, message_id: str) -> Optional[QuotationRecord]:
    """Quotation already stamped with this inbound message, if any."""
    with db.session() as session:
        row = session.scalars(
            select(Quotation).where(Quotation.reply_message_id == message_id)
        ).first()
        return QuotationRecord.model_validate(row) if row is not None else None


def list_open_candidates(db: Database, limit: int) -> list[QuotationRecord]:
    """Most recent ``limit`` quotations still waiting for a reply, newest first."""
    with db.session() as session:
        q = (
            select(Quotation)
            .where(Quotation.status.in_(_values(OPEN_STATUSES)))
            .order_by(Quotation.created_at.desc(), Quotation.id.desc())
            .limit(limit)
        )
        return [QuotationRecord.model_validate(row) for row in session.scalars(q).all()]


def find_with_item(
    db: Database, item_id: str, statuses: Iterable[QuotationStatus]
) -> Optional[QuotationRecord]:
    """First quotation in one of ``statuses`` whose items include ``item_id``."""
    with db.session() as session:
        q = (
            select(Quotation)
            .where(Quotation.status.in_(_values(statuses)))
            .order_by(Quotation.created_at.desc())
        )
        for row in session.scalars(q):
            for item in row.items or []:
                if str(item.get("id", "")) == str(item_id):
                    return QuotationRecord.model_validate(row)
    return None


def change_status(
    db: Database,
    quotation_id: str,
    target: QuotationStatus,
    *,
    actor: Optional[str] = None,
    actor_name: Optional[str] = None,
) -> QuotationRecord:
    """Move a quotation to ``target`` if the transition table allows it.

    Raises QuotationNotFound, InvalidStatusTransition, or ConcurrentModification
    if the row changed between the read and the conditional update.
    """
    target = QuotationStatus(target)
    with db.session() as session:
        row = session.get(Quotation, quotation_id)
        if row is None:
            raise QuotationNotFound(quotation_id)
        current = QuotationStatus(row.status)
        ensure_transition(current, target)
        result = session.execute(
            update(Quotation)
            .where(Quotation.id == quotation_id)
            .where(Quotation.status == current.value)
            .where(Quotation.version == row.version)
            .values(status=target.value, version=Quotation.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModification(f"Quotation {quotation_id!r} changed during status update")
        audit_repo.add_entry(
            session,
            entity_type=audit_repo.ENTITY_QUOTATION,
            entity_id=quotation_id,
            action=audit_repo.ACTION_STATUS_CHANGE,
            data={
                "previousStatus": current.value,
                "newStatus": target.value,
                "supplierName": row.supplier_name,
                "quotedValue": row.quoted_total,
                "expectedDelivery": row.delivery_date,
            },
            actor=actor,
            actor_name=actor_name,
        )
        session.flush()
        session.refresh(row)
        return QuotationRecord.model_validate(row)


def apply_reply(
    db: Database,
    *,
    quotation_id: str,
    expected_version: int,
    message_id: str,
    fields: dict[str, Any],
    audit_action: str,
    audit_data: dict[str, Any],
) -> ClaimResult:
    """Atomically stamp ``message_id`` on an open quotation and write the merged fields.

    The UPDATE only matches while the quotation is open, unstamped and still
    at ``expected_version``; the audit entry is inserted in the same
    transaction, so either both land or neither does.
    """
    values = dict(fields)
    values["reply_message_id"] = message_id
    values["version"] = Quotation.version + 1
    try:
        with db.session() as session:
            result = session.execute(
                update(Quotation)
                .where(Quotation.id == quotation_id)
                .where(Quotation.status.in_(_values(OPEN_STATUSES)))
                .where(Quotation.reply_message_id.is_(None))
                .where(Quotation.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return ClaimResult.CONFLICT
            audit_repo.add_entry(
                session,
                entity_type=audit_repo.ENTITY_QUOTATION,
                entity_id=quotation_id,
                action=audit_action,
                data=audit_data,
            )
    except IntegrityError:
        logger.info(
            "quotation_repo.reply_duplicate",
            quotation_id=quotation_id,
            message_id=message_id,
        )
        return ClaimResult.DUPLICATE
    return ClaimResult.APPLIED
