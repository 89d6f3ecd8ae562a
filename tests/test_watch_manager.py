"""Tests for Gmail watch registration, renewal and status."""

import asyncio
import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from quote_reconciler.db.repositories import audit_repo, checkpoint_repo
from quote_reconciler.db.repositories.checkpoint_repo import CheckpointRecord
from quote_reconciler.mail_provider.errors import MailAuthError, MailProviderError
from quote_reconciler.mail_provider.gmail_mock import GmailMockProvider
from quote_reconciler.webhook.watch import WatchManager, expiration_datetime
from support import MAILBOX, TOPIC, make_db, make_settings, reply_message


class TestWatchManager(unittest.TestCase):
    def setUp(self):
        self.db = make_db()
        self.provider = GmailMockProvider(start_history_id=1000)
        self.manager = WatchManager(self.db, self.provider, make_settings())

    def test_setup_seeds_checkpoint_from_watch_history_id(self):
        self.provider.add_message(reply_message("msg-1"))
        record = asyncio.run(self.manager.setup())
        self.assertEqual(record.mailbox, MAILBOX)
        self.assertEqual(record.last_history_id, "1001")
        self.assertEqual(record.topic, TOPIC)
        self.assertTrue(self.provider.watching)

    def test_setup_keeps_existing_checkpoint(self):
        checkpoint_repo.advance(self.db, MAILBOX, "900")
        self.provider.min_history_id = 0
        record = asyncio.run(self.manager.setup())
        self.assertEqual(record.last_history_id, "900")
        self.assertEqual(record.watch_history_id, "1000")

    def test_setup_without_topic_raises(self):
        manager = WatchManager(self.db, self.provider, make_settings(pubsub_topic=""))
        with self.assertRaises(ValueError):
            asyncio.run(manager.setup())

    def test_setup_propagates_provider_errors(self):
        with mock.patch.object(self.provider, "watch", side_effect=MailAuthError("no token")):
            with self.assertRaises(MailAuthError):
                asyncio.run(self.manager.setup())

    def test_renew_stops_then_registers(self):
        record = asyncio.run(self.manager.renew())
        self.assertIsNotNone(record)
        self.assertEqual(self.provider.stop_calls, 1)
        self.assertEqual(self.provider.watch_calls, 1)

    def test_renew_tolerates_stop_failure(self):
        with mock.patch.object(self.provider, "stop", side_effect=MailProviderError("no watch")):
            record = asyncio.run(self.manager.renew())
        self.assertIsNotNone(record)

    def test_renewal_failure_is_audited_not_raised(self):
        with mock.patch.object(self.provider, "watch", side_effect=MailProviderError("quota exceeded")):
            record = asyncio.run(self.manager.renew())
        self.assertIsNone(record)
        entries = audit_repo.list_for_entity(self.db, MAILBOX)
        self.assertEqual(entries[0].action, audit_repo.ACTION_WATCH_RENEWAL_FAILED)
        self.assertEqual(entries[0].data["error"], "quota exceeded")

    def test_stop_clears_registration_but_keeps_checkpoint(self):
        asyncio.run(self.manager.setup())
        asyncio.run(self.manager.stop())
        stored = checkpoint_repo.get_checkpoint(self.db, MAILBOX)
        self.assertIsNone(stored.expiration)
        self.assertEqual(stored.last_history_id, "1000")
        self.assertFalse(self.provider.watching)

    def test_is_due(self):
        now = datetime.now(timezone.utc)
        far = str(int((now + timedelta(days=6)).timestamp() * 1000))
        near = str(int((now + timedelta(hours=2)).timestamp() * 1000))
        fresh = CheckpointRecord(mailbox=MAILBOX, expiration=far, last_renewed_at=now - timedelta(hours=1))
        self.assertTrue(self.manager.is_due(None, now))
        self.assertFalse(self.manager.is_due(fresh, now))
        self.assertTrue(self.manager.is_due(fresh.model_copy(update={"expiration": near}), now))
        self.assertTrue(
            self.manager.is_due(fresh.model_copy(update={"last_renewed_at": now - timedelta(days=7)}), now)
        )

    def test_renew_if_due_skips_fresh_watch(self):
        asyncio.run(self.manager.setup())
        self.assertIsNone(asyncio.run(self.manager.renew_if_due()))
        self.assertEqual(self.provider.watch_calls, 1)

    def test_status(self):
        before = asyncio.run(self.manager.status())
        self.assertFalse(before["watch_active"])
        asyncio.run(self.manager.setup())
        after = asyncio.run(self.manager.status())
        self.assertTrue(after["watch_active"])
        self.assertEqual(after["last_history_id"], "1000")
        self.assertEqual(after["topic"], TOPIC)

    def test_unset_mailbox_is_resolved_from_profile(self):
        manager = WatchManager(self.db, self.provider, make_settings(mailbox=""))
        record = asyncio.run(manager.setup())
        self.assertEqual(record.mailbox, MAILBOX)
        self.assertIsNone(checkpoint_repo.get_checkpoint(self.db, "me"))
        self.assertEqual(asyncio.run(manager.status())["last_history_id"], "1000")

    def test_status_without_profile_reports_inactive(self):
        manager = WatchManager(self.db, self.provider, make_settings(mailbox=""))
        with mock.patch.object(self.provider, "get_profile", side_effect=MailAuthError("no token")):
            status = asyncio.run(manager.status())
        self.assertFalse(status["watch_active"])


def test_expiration_datetime():
    assert expiration_datetime(None) is None
    assert expiration_datetime("soon") is None
    assert expiration_datetime("0") == datetime(1970, 1, 1, tzinfo=timezone.utc)


if __name__ == "__main__":
    unittest.main()
