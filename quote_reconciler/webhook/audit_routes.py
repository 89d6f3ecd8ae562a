"""Audit trail API: entries for one quotation (or message), newest first."""

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from quote_reconciler.db.repositories import audit_repo

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("")
async def list_audit_logs(
    request: Request,
    quotation_id: Optional[str] = Query(None, description="Quotation id (or message id) to list entries for"),
    action: Optional[str] = Query(None, description="Only entries with this action, when no quotation_id"),
    limit: int = Query(50, ge=1, le=500),
) -> dict[str, Any]:
    ctx = request.app.state.context
    if quotation_id is not None and not quotation_id.strip():
        raise HTTPException(status_code=400, detail="quotation_id must be non-empty")
    if quotation_id:
        entries = await asyncio.to_thread(audit_repo.list_for_entity, ctx.db, quotation_id.strip(), limit)
    else:
        entries = await asyncio.to_thread(audit_repo.list_recent, ctx.db, limit, action)
    return {
        "quotation_id": quotation_id,
        "count": len(entries),
        "entries": [e.model_dump(mode="json") for e in entries],
    }
