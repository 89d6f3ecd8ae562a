"""Notification listener: turn a Gmail push into reconciled messages and a moved checkpoint.

A push only says "the mailbox changed up to history id N". The listener reads
the messageAdded history since the stored checkpoint, reconciles each new
message once, and then moves the checkpoint forward:

- to N, or to the last history record read when the page bound cut the delta;
- never past a record whose message raised (it is re-read next time), until
  that message has failed MAX_MESSAGE_ATTEMPTS times and is abandoned;
- never backwards.

If the stored checkpoint is missing, invalid or expired on the provider side,
reading restarts from N. Mail auth problems leave the checkpoint untouched.
"""

import asyncio
from typing import Optional

from opentelemetry.trace import Status, StatusCode

from quote_reconciler.db import Database
from quote_reconciler.db.repositories import audit_repo, checkpoint_repo
from quote_reconciler.db.repositories.checkpoint_repo import parse_history_id
from quote_reconciler.mail_provider.errors import HistoryNotFoundError, MailAuthError
from quote_reconciler.mail_provider.gmail_models import HistoryRecord
from quote_reconciler.mail_provider.protocol import MailProvider
from quote_reconciler.reconciliation.engine import ReconciliationEngine
from quote_reconciler.utils.logger import get_logger
from quote_reconciler.utils.tracing import get_tracer
from quote_reconciler.webhook.models import GmailNotification, ListenerResult

logger = get_logger("quote_reconciler.listener")


class NotificationListener:
    def __init__(
        self,
        db: Database,
        provider: MailProvider,
        engine: ReconciliationEngine,
        settings,
    ):
        self.db = db
        self.provider = provider
        self.engine = engine
        self.settings = settings

    @classmethod
    def from_context(cls, ctx, engine: Optional[ReconciliationEngine] = None) -> "NotificationListener":
        return cls(ctx.db, ctx.provider, engine or ReconciliationEngine.from_context(ctx), ctx.settings)

    def _mailbox_for(self, notification: GmailNotification) -> Optional[str]:
        address = notification.email_address.strip().lower()
        configured = (self.settings.mailbox or "").strip().lower()
        if configured and address != configured:
            return None
        return configured or address

    async def handle_notification(self, notification: GmailNotification) -> ListenerResult:
        mailbox = self._mailbox_for(notification)
        if mailbox is None:
            logger.info(
                "listener.mailbox_ignored",
                email_address=notification.email_address,
                configured=self.settings.mailbox,
            )
            return ListenerResult(status="ignored", detail="mailbox not watched")
        marker = parse_history_id(notification.history_id)
        if marker is None:
            logger.warning("listener.invalid_history_id", history_id=notification.history_id)
            return ListenerResult(status="invalid", mailbox=mailbox, detail="invalid history id")

        stored = await asyncio.to_thread(checkpoint_repo.get_checkpoint, self.db, mailbox)
        start = parse_history_id(stored.last_history_id) if stored is not None else None
        if start is None:
            logger.info(
                "listener.checkpoint_missing",
                mailbox=mailbox,
                stored=stored.last_history_id if stored is not None else None,
            )
            start = marker
        return await self._run(mailbox, start, marker)

    async def replay(self, mailbox: str, start_history_id: str) -> ListenerResult:
        """Re-read history from an explicit marker (operator recovery)."""
        start = parse_history_id(start_history_id)
        if start is None:
            return ListenerResult(status="invalid", mailbox=mailbox, detail="invalid history id")
        return await self._run(mailbox.strip().lower(), start, None)

    async def _run(self, mailbox: str, start: int, marker: Optional[int]) -> ListenerResult:
        tracer = get_tracer()
        log = logger.bind(mailbox=mailbox)
        result = ListenerResult(
            status="processed",
            mailbox=mailbox,
            start_history_id=str(start),
            history_id=str(marker) if marker is not None else None,
        )
        with tracer.start_as_current_span(
            "handle_notification",
            attributes={"mail.mailbox": mailbox, "mail.start_history_id": str(start)},
        ) as span:
            try:
                try:
                    records, truncated = await self._read_history(start)
                except HistoryNotFoundError:
                    if marker is None or marker == start:
                        raise
                    log.warning("listener.history_expired", start_history_id=start, restart_from=marker)
                    start = marker
                    result.start_history_id = str(start)
                    records, truncated = await self._read_history(start)
            except MailAuthError as e:
                log.error("listener.auth_unavailable", error=str(e))
                result.status = "auth_unavailable"
                result.detail = str(e)
                return result
            except HistoryNotFoundError as e:
                log.error("listener.history_unavailable", start_history_id=start, error=str(e))
                span.set_status(Status(StatusCode.ERROR, str(e)))
                result.status = "invalid"
                result.detail = str(e)
                return result

            result.truncated = truncated
            hold_before = await self._process_records(records, result, log)
            if result.status == "auth_unavailable":
                return result

            if hold_before is not None:
                target = hold_before - 1
            elif truncated or marker is None:
                target = int(records[-1].id) if records else start
            else:
                target = max(marker, int(records[-1].id)) if records else marker
            moved = await asyncio.to_thread(checkpoint_repo.advance, self.db, mailbox, str(target))
            current = await asyncio.to_thread(checkpoint_repo.get_checkpoint, self.db, mailbox)
            result.checkpoint = current.last_history_id if current is not None else None
            span.set_attribute("mail.messages_seen", result.messages_seen)
            log.info(
                "listener.batch_complete",
                records=len(records),
                messages=result.messages_seen,
                outcomes=result.outcomes,
                failed=len(result.failed),
                truncated=truncated,
                checkpoint=result.checkpoint,
                checkpoint_moved=moved,
            )
            return result

    async def _read_history(self, start: int) -> tuple[list[HistoryRecord], bool]:
        """Records after ``start`` in history order, bounded by the page limit. Second value: truncated."""
        label_id = self.settings.label_ids[0] if self.settings.label_ids else None
        records: list[HistoryRecord] = []
        page_token: Optional[str] = None
        for _ in range(max(1, self.settings.history_max_pages)):
            page = await self.provider.list_history(
                str(start),
                page_token=page_token,
                max_results=self.settings.history_page_size,
                label_id=label_id,
            )
            records.extend(page.history)
            page_token = page.nextPageToken
            if not page_token:
                break
        records = [r for r in records if parse_history_id(r.id) is not None]
        records.sort(key=lambda r: int(r.id))
        return records, bool(page_token)

    async def _process_records(self, records: list[HistoryRecord], result: ListenerResult, log) -> Optional[int]:
        """Reconcile each new message once. Returns the id of the first record to hold the checkpoint at."""
        seen: set[str] = set()
        hold_before: Optional[int] = None
        for record in records:
            record_id = int(record.id)
            for message_id in record.message_ids():
                if message_id in seen:
                    continue
                seen.add(message_id)
                result.messages_seen += 1
                if await asyncio.to_thread(
                    audit_repo.exists, self.db, message_id, audit_repo.ACTION_EMAIL_PROCESSING_ABANDONED
                ):
                    result.count("abandoned")
                    continue
                try:
                    outcome = await self.engine.process_message_id(message_id)
                except MailAuthError as e:
                    log.error("listener.auth_unavailable", message_id=message_id, error=str(e))
                    result.status = "auth_unavailable"
                    result.detail = str(e)
                    return record_id
                except Exception as e:
                    log.exception("listener.message_failed", message_id=message_id, error=str(e))
                    result.failed.append(message_id)
                    abandoned = await self._record_failure(message_id, record_id, e)
                    if abandoned:
                        result.abandoned.append(message_id)
                    elif hold_before is None:
                        hold_before = record_id
                    continue
                result.count(outcome.status)
        return hold_before

    async def _record_failure(self, message_id: str, record_id: int, error: Exception) -> bool:
        """Audit the failure; returns True when the message has now been abandoned."""
        await asyncio.to_thread(
            audit_repo.record,
            self.db,
            entity_type=audit_repo.ENTITY_MESSAGE,
            entity_id=message_id,
            action=audit_repo.ACTION_EMAIL_PROCESSING_FAILED,
            data={"historyId": str(record_id), "error": str(error), "errorType": type(error).__name__},
        )
        failures = await asyncio.to_thread(
            audit_repo.count, self.db, message_id, audit_repo.ACTION_EMAIL_PROCESSING_FAILED
        )
        if failures < self.settings.max_message_attempts:
            return False
        await asyncio.to_thread(
            audit_repo.record,
            self.db,
            entity_type=audit_repo.ENTITY_MESSAGE,
            entity_id=message_id,
            action=audit_repo.ACTION_EMAIL_PROCESSING_ABANDONED,
            data={"historyId": str(record_id), "attempts": failures, "lastError": str(error)},
        )
        logger.error("listener.message_abandoned", message_id=message_id, attempts=failures)
        return True
