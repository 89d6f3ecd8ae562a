"""Audit log repository: append entries and read them back newest first."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from quote_reconciler.db import Database
from quote_reconciler.db.models.audit import AuditLog

ENTITY_QUOTATION = "quotation"
ENTITY_MESSAGE = "message"
ENTITY_SYSTEM = "system"

ACTION_CREATE = "CREATE"
ACTION_AUTO_CREATE = "AUTO_CREATE"
ACTION_STATUS_CHANGE = "STATUS_CHANGE"
ACTION_EMAIL_SENT = "EMAIL_SENT"
ACTION_EMAIL_RECEIVED = "EMAIL_RECEIVED"
ACTION_EMAIL_PROCESSED_AI = "EMAIL_PROCESSED_AI"
ACTION_EMAIL_UNMATCHED = "EMAIL_UNMATCHED"
ACTION_EMAIL_PROCESSING_FAILED = "EMAIL_PROCESSING_FAILED"
ACTION_EMAIL_PROCESSING_ABANDONED = "EMAIL_PROCESSING_ABANDONED"
ACTION_WATCH_RENEWAL_FAILED = "GMAIL_WATCH_RENEWAL_FAILED"

SYSTEM_ACTOR = "system"
SYSTEM_ACTOR_NAME = "Sistema"


class AuditEntry(BaseModel):
    id: int
    entity_type: str
    entity_id: Optional[str] = None
    action: str
    actor: str
    actor_name: str
    data: dict[str, Any] = {}
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


def add_entry(
    session: Session,
    *,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    data: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    actor_name: Optional[str] = None,
) -> AuditLog:
    """Add an entry to an open session so it commits together with the caller's write."""
    row = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        data=data or {},
        actor=actor or SYSTEM_ACTOR,
        actor_name=actor_name or SYSTEM_ACTOR_NAME,
    )
    session.add(row)
    return row


def record(
    db: Database,
    *,
    entity_type: str,
    entity_id: Optional[str],
    action: str,
    data: Optional[dict[str, Any]] = None,
    actor: Optional[str] = None,
    actor_name: Optional[str] = None,
) -> AuditEntry:
    """Append one entry in its own transaction."""
    with db.session() as session:
        row = add_entry(
            session,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            data=data,
            actor=actor,
            actor_name=actor_name,
        )
        session.flush()
        return AuditEntry.model_validate(row)


def list_for_entity(db: Database, entity_id: str, limit: int = 50) -> list[AuditEntry]:
    """Entries for one entity, newest first."""
    with db.session() as session:
        q = (
            select(AuditLog)
            .where(AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        return [AuditEntry.model_validate(row) for row in session.scalars(q).all()]


def list_recent(db: Database, limit: int = 50, action: Optional[str] = None) -> list[AuditEntry]:
    """Most recent entries across all entities, optionally for one action."""
    with db.session() as session:
        q = select(AuditLog)
        if action:
            q = q.where(AuditLog.action == action)
        q = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
        return [AuditEntry.model_validate(row) for row in session.scalars(q).all()]


def count(db: Database, entity_id: str, action: str) -> int:
    with db.session() as session:
        q = (
            select(func.count(AuditLog.id))
            .where(AuditLog.entity_id == entity_id)
            .where(AuditLog.action == action)
        )
        return int(session.scalar(q) or 0)


def exists(db: Database, entity_id: str, action: str) -> bool:
    return count(db, entity_id, action) > 0
