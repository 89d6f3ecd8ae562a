"""Result of reconciling one inbound message."""

from typing import Literal, Optional

from pydantic import BaseModel

from quote_reconciler.utils.email_identity import MatchKind

OutcomeStatus = Literal["merged", "duplicate", "unmatched", "not_found"]


class ReconcileOutcome(BaseModel):
    status: OutcomeStatus
    message_id: str
    quotation_id: Optional[str] = None
    match_kind: Optional[MatchKind] = None
    extraction_success: Optional[bool] = None
    needs_manual_review: bool = False
    quoted_total: Optional[float] = None
