"""Reconcile inbound supplier emails against open quotations.

Per message: dedup -> candidate search -> body decode -> offer extraction ->
atomic merge + audit. Duplicate and unmatched messages are not errors.
Infrastructure failures propagate so the caller can audit and retry the
message on a later notification.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Optional, Sequence

from opentelemetry.trace import Status, StatusCode

from quote_reconciler.agents.offer_agent import OfferExtractor
from quote_reconciler.config import CANDIDATE_LIMIT
from quote_reconciler.db import Database
from quote_reconciler.db.repositories import audit_repo, quotation_repo
from quote_reconciler.db.repositories.quotation_repo import ClaimResult, ConcurrentModification
from quote_reconciler.mail_provider.mapping import gmail_message_to_inbound
from quote_reconciler.mail_provider.protocol import MailProvider
from quote_reconciler.models.email import InboundMessage
from quote_reconciler.models.offer import ExtractionResult
from quote_reconciler.models.outcome import ReconcileOutcome
from quote_reconciler.models.quotation import (
    InvalidStatusTransition,
    QuotationRecord,
    QuotationStatus,
)
from quote_reconciler.reconciliation.merge import build_audit_data, build_reply_fields
from quote_reconciler.utils.body_decoder import decode_payload
from quote_reconciler.utils.email_identity import MatchKind, match_identity, normalize_address
from quote_reconciler.utils.logger import get_logger
from quote_reconciler.utils.tracing import get_tracer

logger = get_logger("quote_reconciler.reconcile")

# Claim attempts per message: the first try plus one re-run after a lost race.
CLAIM_ATTEMPTS = 2


def select_candidate(
    sender: Optional[str], candidates: Sequence[QuotationRecord]
) -> tuple[QuotationRecord, MatchKind] | None:
    """First exact supplier match, else first domain match, in candidate order."""
    first_domain: QuotationRecord | None = None
    for quotation in candidates:
        kind = match_identity(sender, quotation.supplier_email)
        if kind == "exact":
            return quotation, "exact"
        if kind == "domain" and first_domain is None:
            first_domain = quotation
    if first_domain is not None:
        return first_domain, "domain"
    return None


class ReconciliationEngine:
    """Holds no per-message state; one instance serves concurrent notifications."""

    def __init__(
        self,
        db: Database,
        extractor: OfferExtractor,
        provider: Optional[MailProvider] = None,
        candidate_limit: int = CANDIDATE_LIMIT,
    ):
        self.db = db
        self.extractor = extractor
        self.provider = provider
        self.candidate_limit = candidate_limit

    @classmethod
    def from_context(cls, ctx) -> "ReconciliationEngine":
        return cls(
            ctx.db,
            ctx.extractor,
            provider=ctx.provider,
            candidate_limit=ctx.settings.candidate_limit,
        )

    async def process_message_id(self, message_id: str) -> ReconcileOutcome:
        """Fetch a message from the provider and reconcile it."""
        if self.provider is None:
            raise RuntimeError("ReconciliationEngine has no mail provider")
        existing = await asyncio.to_thread(quotation_repo.find_by_reply_message_id, self.db, message_id)
        if existing is not None:
            logger.debug("reconcile.duplicate", message_id=message_id, quotation_id=existing.id)
            return ReconcileOutcome(status="duplicate", message_id=message_id, quotation_id=existing.id)
        message = await self.provider.get_message(message_id)
        if message is None:
            logger.info("reconcile.message_not_found", message_id=message_id)
            return ReconcileOutcome(status="not_found", message_id=message_id)
        return await self.reconcile(gmail_message_to_inbound(message))

    async def reconcile(self, message: InboundMessage) -> ReconcileOutcome:
        tracer = get_tracer()
        start = perf_counter()
        log = logger.bind(message_id=message.id, sender=message.sender_address)
        with tracer.start_as_current_span(
            "reconcile_message",
            attributes={"email.message_id": message.id, "email.sender": message.sender_address or ""},
        ) as span:
            try:
                outcome = await self._reconcile(message, log)
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise
            span.set_attribute("reconcile.status", outcome.status)
            log.info(
                "reconcile.complete",
                status=outcome.status,
                quotation_id=outcome.quotation_id,
                duration_ms=round((perf_counter() - start) * 1000, 2),
            )
            return outcome

    async def _reconcile(self, message: InboundMessage, log) -> ReconcileOutcome:
        extracted: dict[str, ExtractionResult] = {}
        for attempt in range(1, CLAIM_ATTEMPTS + 1):
            existing = await asyncio.to_thread(
                quotation_repo.find_by_reply_message_id, self.db, message.id
            )
            if existing is not None:
                log.info("reconcile.duplicate", quotation_id=existing.id)
                return ReconcileOutcome(status="duplicate", message_id=message.id, quotation_id=existing.id)

            candidates = await asyncio.to_thread(
                quotation_repo.list_open_candidates, self.db, self.candidate_limit
            )
            selected = select_candidate(message.sender_address or message.sender, candidates)
            if selected is None:
                log.info("reconcile.unmatched", candidates=len(candidates))
                await self._record_unmatched(message, len(candidates))
                return ReconcileOutcome(status="unmatched", message_id=message.id)
            quotation, match_kind = selected
            log.info("reconcile.matched", quotation_id=quotation.id, match_kind=match_kind, attempt=attempt)

            if message.body is None:
                message.body = decode_payload(message.payload, message.snippet)
            if quotation.id not in extracted:
                extracted[quotation.id] = await self.extractor.extract(message.body, quotation.items)
            result = extracted[quotation.id]

            claim, fields = await self._merge(quotation, message, result, match_kind)
            if claim is ClaimResult.APPLIED:
                log.info(
                    "reconcile.merged",
                    quotation_id=quotation.id,
                    ai_success=result.success,
                    quoted_total=fields["quoted_total"],
                    needs_manual_review=fields["needs_manual_review"],
                )
                return ReconcileOutcome(
                    status="merged",
                    message_id=message.id,
                    quotation_id=quotation.id,
                    match_kind=match_kind,
                    extraction_success=result.success,
                    needs_manual_review=fields["needs_manual_review"],
                    quoted_total=fields["quoted_total"],
                )
            if claim is ClaimResult.DUPLICATE:
                return ReconcileOutcome(status="duplicate", message_id=message.id, quotation_id=quotation.id)
            log.warning("reconcile.claim_conflict", quotation_id=quotation.id, attempt=attempt)

        raise ConcurrentModification(f"Lost the claim race for message {message.id!r} twice")

    async def _merge(
        self,
        quotation: QuotationRecord,
        message: InboundMessage,
        result: ExtractionResult,
        match_kind: Optional[MatchKind],
    ) -> tuple[ClaimResult, dict[str, Any]]:
        with get_tracer().start_as_current_span(
            "merge_offer", attributes={"quotation.id": quotation.id}
        ):
            fields = build_reply_fields(quotation, message, result)
            claim = await asyncio.to_thread(
                quotation_repo.apply_reply,
                self.db,
                quotation_id=quotation.id,
                expected_version=quotation.version,
                message_id=message.id,
                fields=fields,
                audit_action=audit_repo.ACTION_EMAIL_PROCESSED_AI,
                audit_data=build_audit_data(quotation, message, result, fields, match_kind),
            )
            return claim, fields

    async def _record_unmatched(self, message: InboundMessage, candidate_count: int) -> None:
        """One EMAIL_UNMATCHED entry per message id, however often it is redelivered."""
        already = await asyncio.to_thread(
            audit_repo.exists, self.db, message.id, audit_repo.ACTION_EMAIL_UNMATCHED
        )
        if already:
            return
        await asyncio.to_thread(
            audit_repo.record,
            self.db,
            entity_type=audit_repo.ENTITY_MESSAGE,
            entity_id=message.id,
            action=audit_repo.ACTION_EMAIL_UNMATCHED,
            data={
                "from": message.sender,
                "subject": message.subject,
                "candidates": candidate_count,
            },
        )

    async def apply_manual_reply(
        self,
        quotation_id: str,
        *,
        sender: str,
        subject: str,
        body: str,
        message_id: Optional[str] = None,
        actor: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> ReconcileOutcome:
        """Merge a reply pasted or forwarded by a user into a named quotation.

        Raises QuotationNotFound, InvalidStatusTransition (quotation not open)
        or ConcurrentModification.
        """
        message = InboundMessage(
            id=message_id or f"manual-{uuid.uuid4().hex}",
            sender=sender,
            sender_address=normalize_address(sender) or None,
            subject=subject,
            body=body,
            received_at=datetime.now(timezone.utc),
        )
        quotation = await asyncio.to_thread(quotation_repo.get_quotation, self.db, quotation_id)
        existing = await asyncio.to_thread(quotation_repo.find_by_reply_message_id, self.db, message.id)
        if existing is not None:
            logger.info("reconcile.manual_duplicate", quotation_id=existing.id, message_id=message.id)
            return ReconcileOutcome(status="duplicate", message_id=message.id, quotation_id=existing.id)
        await asyncio.to_thread(
            audit_repo.record,
            self.db,
            entity_type=audit_repo.ENTITY_QUOTATION,
            entity_id=quotation_id,
            action=audit_repo.ACTION_EMAIL_RECEIVED,
            data={"from": sender, "subject": subject, "bodyLength": len(body or "")},
            actor=actor,
            actor_name=actor_name,
        )
        if not quotation.is_open:
            raise InvalidStatusTransition(quotation.status, QuotationStatus.QUOTED)

        match_kind = match_identity(message.sender_address, quotation.supplier_email)
        result = await self.extractor.extract(body, quotation.items)
        claim, fields = await self._merge(quotation, message, result, match_kind)
        if claim is ClaimResult.DUPLICATE:
            return ReconcileOutcome(status="duplicate", message_id=message.id, quotation_id=quotation.id)
        if claim is ClaimResult.CONFLICT:
            raise ConcurrentModification(f"Quotation {quotation_id!r} changed while merging the reply")
        logger.info(
            "reconcile.manual_merged",
            quotation_id=quotation_id,
            message_id=message.id,
            ai_success=result.success,
        )
        return ReconcileOutcome(
            status="merged",
            message_id=message.id,
            quotation_id=quotation_id,
            match_kind=match_kind,
            extraction_success=result.success,
            needs_manual_review=fields["needs_manual_review"],
            quoted_total=fields["quoted_total"],
        )
