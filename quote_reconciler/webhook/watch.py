"""Gmail watch lifecycle: register, renew, stop and report the push subscription.

Gmail watches expire after seven days. Renewal runs from a background loop in
the server, the ``renew-watch`` CLI command or the HTTP endpoint. A failed
renewal is recorded in the audit trail and logged; callers never see it raise.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from quote_reconciler.db import Database
from quote_reconciler.db.repositories import audit_repo, checkpoint_repo
from quote_reconciler.db.repositories.checkpoint_repo import CheckpointRecord
from quote_reconciler.mail_provider.errors import MailProviderError
from quote_reconciler.mail_provider.protocol import MailProvider
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.watch")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def expiration_datetime(expiration_ms: Optional[str]) -> Optional[datetime]:
    if not expiration_ms or not str(expiration_ms).isdigit():
        return None
    return datetime.fromtimestamp(int(expiration_ms) / 1000, tz=timezone.utc)


class WatchManager:
    def __init__(self, db: Database, provider: MailProvider, settings):
        self.db = db
        self.provider = provider
        self.settings = settings
        self._resolved: Optional[str] = None

    @classmethod
    def from_context(cls, ctx) -> "WatchManager":
        return cls(ctx.db, ctx.provider, ctx.settings)

    @property
    def mailbox(self) -> str:
        """Checkpoint key: the configured mailbox, else the address the provider reported."""
        configured = (self.settings.mailbox or "").strip().lower()
        return configured or self._resolved or "me"

    async def resolve_mailbox(self) -> str:
        """Look up the authorized address when no mailbox is configured.

        Notifications carry the real address, so the checkpoint must be stored under
        it for the listener to find.
        """
        if (self.settings.mailbox or "").strip() or self._resolved:
            return self.mailbox
        profile = await self.provider.get_profile()
        self._resolved = profile.email_address.strip().lower()
        logger.info("watch.mailbox_resolved", mailbox=self._resolved)
        return self._resolved

    async def setup(self) -> CheckpointRecord:
        """Register the watch and store its history id and expiry. Provider errors propagate."""
        topic = self.settings.pubsub_topic
        if not topic:
            raise ValueError("GMAIL_PUBSUB_TOPIC is not configured")
        mailbox = await self.resolve_mailbox()
        watch = await self.provider.watch(topic, list(self.settings.label_ids))
        record = await asyncio.to_thread(
            checkpoint_repo.save_watch,
            self.db,
            mailbox,
            history_id=watch.history_id,
            expiration=watch.expiration,
            topic=topic,
            renewed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "watch.registered",
            mailbox=mailbox,
            history_id=watch.history_id,
            expiration=watch.expiration,
            checkpoint=record.last_history_id,
        )
        return record

    async def renew(self) -> Optional[CheckpointRecord]:
        """Stop and re-register. Returns None (after auditing) when renewal failed."""
        try:
            try:
                await self.provider.stop()
            except MailProviderError as e:
                # Nothing to stop is fine; auth problems resurface in watch().
                logger.warning("watch.stop_before_renew_failed", error=str(e))
            record = await self.setup()
        except Exception as e:
            logger.error("watch.renewal_failed", mailbox=self.mailbox, error=str(e), error_type=type(e).__name__)
            await asyncio.to_thread(
                audit_repo.record,
                self.db,
                entity_type=audit_repo.ENTITY_SYSTEM,
                entity_id=self.mailbox,
                action=audit_repo.ACTION_WATCH_RENEWAL_FAILED,
                data={"error": str(e), "errorType": type(e).__name__},
            )
            return None
        logger.info("watch.renewed", mailbox=self.mailbox, expiration=record.expiration)
        return record

    async def stop(self) -> None:
        mailbox = await self.resolve_mailbox()
        await self.provider.stop()
        await asyncio.to_thread(checkpoint_repo.clear_watch, self.db, mailbox)
        logger.info("watch.stopped", mailbox=mailbox)

    def is_due(self, checkpoint: Optional[CheckpointRecord], now: Optional[datetime] = None) -> bool:
        """Due when never registered, renewed too long ago, or expiring within the margin."""
        now = now or datetime.now(timezone.utc)
        if checkpoint is None or checkpoint.last_renewed_at is None:
            return True
        if now - _aware(checkpoint.last_renewed_at) >= timedelta(hours=self.settings.watch_renew_interval_hours):
            return True
        expires = expiration_datetime(checkpoint.expiration)
        if expires is not None and expires - now <= timedelta(hours=self.settings.watch_renew_margin_hours):
            return True
        return False

    async def renew_if_due(self, now: Optional[datetime] = None) -> Optional[CheckpointRecord]:
        try:
            mailbox = await self.resolve_mailbox()
        except MailProviderError as e:
            logger.warning("watch.mailbox_unresolved", error=str(e))
            return await self.renew()
        checkpoint = await asyncio.to_thread(checkpoint_repo.get_checkpoint, self.db, mailbox)
        if not self.is_due(checkpoint, now):
            logger.debug("watch.renewal_not_due", mailbox=self.mailbox)
            return None
        return await self.renew()

    async def status(self) -> dict[str, Any]:
        try:
            mailbox = await self.resolve_mailbox()
        except MailProviderError as e:
            logger.warning("watch.mailbox_unresolved", error=str(e))
            mailbox = self.mailbox
        checkpoint = await asyncio.to_thread(checkpoint_repo.get_checkpoint, self.db, mailbox)
        if checkpoint is None:
            return {"watch_active": False, "expiration": None, "last_renewed_at": None, "last_history_id": None}
        expires = expiration_datetime(checkpoint.expiration)
        renewed = _aware(checkpoint.last_renewed_at)
        return {
            "watch_active": expires is not None and expires > datetime.now(timezone.utc),
            "expiration": expires.isoformat() if expires else None,
            "last_renewed_at": renewed.isoformat() if renewed else None,
            "last_history_id": checkpoint.last_history_id,
            "topic": checkpoint.topic,
        }

    async def run_renewal_loop(self) -> None:
        """Check periodically and renew when due. Stops on CancelledError."""
        interval = max(60, int(self.settings.watch_check_interval_seconds))
        logger.info("watch.loop_started", interval_seconds=interval)
        try:
            while True:
                try:
                    await self.renew_if_due()
                except Exception as e:
                    logger.exception("watch.loop_error", error=str(e))
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("watch.loop_stopped")
            raise
