"""Tests for the reconciliation engine: end-to-end merge, idempotence, matching and races."""

import asyncio
import sys
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from quote_reconciler.db.repositories import audit_repo, quotation_repo
from quote_reconciler.db.repositories.quotation_repo import ClaimResult, ConcurrentModification
from quote_reconciler.mail_provider.gmail_mock import GmailMockProvider
from quote_reconciler.models.quotation import InvalidStatusTransition, QuotationStatus
from quote_reconciler.reconciliation.engine import ReconciliationEngine
from support import (
    create_quotation,
    json_extractor,
    make_db,
    minutes_ago,
    reply_message,
    scripted_extractor,
)


def _actions(db, entity_id):
    return [e.action for e in audit_repo.list_for_entity(db, entity_id)]


class TestReconciliationEngine(unittest.TestCase):
    def setUp(self):
        self.db = make_db()
        self.provider = GmailMockProvider()
        self.extractor, self.script = json_extractor()
        self.engine = ReconciliationEngine(self.db, self.extractor, provider=self.provider)

    def _deliver(self, **kwargs) -> str:
        raw = reply_message(**kwargs)
        self.provider.add_message(raw)
        return raw["id"]

    def test_end_to_end_flour_quote(self):
        q = create_quotation(self.db)
        message_id = self._deliver()

        outcome = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(outcome.status, "merged")
        self.assertEqual(outcome.quotation_id, q.id)
        self.assertEqual(outcome.match_kind, "exact")
        stored = quotation_repo.get_quotation(self.db, q.id)
        self.assertEqual(stored.status, QuotationStatus.QUOTED)
        self.assertEqual(stored.quoted_total, 580.0)
        self.assertEqual(stored.reply_message_id, message_id)
        self.assertEqual(stored.reply_from, '"João" <fornecedor@padaria.com>')
        self.assertIn("R$ 5,80", stored.reply_body)
        self.assertEqual(stored.items[0].quoted_unit_price, 5.8)
        self.assertEqual(stored.payment_terms, "28 dias")
        self.assertFalse(stored.needs_manual_review)
        self.assertTrue(stored.ai_processed)
        self.assertEqual(_actions(self.db, q.id).count("EMAIL_PROCESSED_AI"), 1)

    def test_redelivery_changes_nothing(self):
        q = create_quotation(self.db)
        message_id = self._deliver()
        asyncio.run(self.engine.process_message_id(message_id))
        before = quotation_repo.get_quotation(self.db, q.id)

        again = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(again.status, "duplicate")
        self.assertEqual(quotation_repo.get_quotation(self.db, q.id), before)
        self.assertEqual(_actions(self.db, q.id).count("EMAIL_PROCESSED_AI"), 1)
        self.assertEqual(self.script.call_count, 1)

    def test_invalid_model_output_still_quotes_with_review_flag(self):
        extractor, _ = scripted_extractor("não é json")
        engine = ReconciliationEngine(self.db, extractor, provider=self.provider)
        q = create_quotation(self.db)
        message_id = self._deliver()

        outcome = asyncio.run(engine.process_message_id(message_id))

        self.assertEqual(outcome.status, "merged")
        self.assertFalse(outcome.extraction_success)
        stored = quotation_repo.get_quotation(self.db, q.id)
        self.assertEqual(stored.status, QuotationStatus.QUOTED)
        self.assertTrue(stored.needs_manual_review)
        self.assertFalse(stored.ai_success)
        self.assertEqual(stored.suggested_action, "wait")
        self.assertTrue(stored.has_problems)

    def test_exact_match_preferred_over_newer_domain_match(self):
        exact = create_quotation(self.db, supplier_email="fornecedor@padaria.com", created_at=minutes_ago(10))
        create_quotation(self.db, supplier_email="vendas@padaria.com", created_at=minutes_ago(1))
        message_id = self._deliver()

        outcome = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(outcome.quotation_id, exact.id)
        self.assertEqual(outcome.match_kind, "exact")

    def test_domain_match_picks_most_recent(self):
        create_quotation(self.db, supplier_email="compras@moinho.com.br", created_at=minutes_ago(10))
        newer = create_quotation(self.db, supplier_email="compras@moinho.com.br", created_at=minutes_ago(1))
        message_id = self._deliver(sender="Vendas Moinho <vendas@moinho.com.br>")

        outcome = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(outcome.quotation_id, newer.id)
        self.assertEqual(outcome.match_kind, "domain")

    def test_unmatched_is_audited_once(self):
        create_quotation(self.db)
        message_id = self._deliver(sender="spam@outro.com")

        first = asyncio.run(self.engine.process_message_id(message_id))
        second = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(first.status, "unmatched")
        self.assertEqual(second.status, "unmatched")
        self.assertEqual(audit_repo.count(self.db, message_id, "EMAIL_UNMATCHED"), 1)
        self.assertEqual(self.script.call_count, 0)

    def test_closed_quotations_are_not_candidates(self):
        create_quotation(self.db, status=QuotationStatus.DRAFT)
        message_id = self._deliver()
        self.assertEqual(asyncio.run(self.engine.process_message_id(message_id)).status, "unmatched")

    def test_fifty_first_most_recent_open_quotation_is_not_matchable(self):
        oldest = create_quotation(self.db, supplier_email="antigo@fornecedor.com", created_at=minutes_ago(500))
        for i in range(50):
            create_quotation(self.db, supplier_email=f"outro{i}@empresa{i}.com", created_at=minutes_ago(100 - i))
        message_id = self._deliver(sender="antigo@fornecedor.com")

        outcome = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(outcome.status, "unmatched")
        self.assertEqual(quotation_repo.get_quotation(self.db, oldest.id).status, QuotationStatus.SENT)

    def test_candidate_limit_is_configurable(self):
        oldest = create_quotation(self.db, supplier_email="antigo@fornecedor.com", created_at=minutes_ago(500))
        for i in range(50):
            create_quotation(self.db, supplier_email=f"outro{i}@empresa{i}.com", created_at=minutes_ago(100 - i))
        engine = ReconciliationEngine(self.db, self.extractor, provider=self.provider, candidate_limit=51)
        message_id = self._deliver(sender="antigo@fornecedor.com")
        self.assertEqual(asyncio.run(engine.process_message_id(message_id)).quotation_id, oldest.id)

    def test_missing_message_is_not_found(self):
        self.assertEqual(asyncio.run(self.engine.process_message_id("ghost")).status, "not_found")

    def test_lost_claim_race_reruns_candidate_search(self):
        first = create_quotation(self.db, created_at=minutes_ago(1))
        second = create_quotation(self.db, created_at=minutes_ago(5))
        message_id = self._deliver()
        real_apply = quotation_repo.apply_reply
        calls = []

        def racing_apply(db, **kwargs):
            calls.append(kwargs["quotation_id"])
            if len(calls) == 1:
                # A concurrent reply closes the first quotation just before our claim.
                quotation_repo.change_status(db, first.id, QuotationStatus.CANCELLED)
                return ClaimResult.CONFLICT
            return real_apply(db, **kwargs)

        with mock.patch.object(quotation_repo, "apply_reply", side_effect=racing_apply):
            outcome = asyncio.run(self.engine.process_message_id(message_id))

        self.assertEqual(calls, [first.id, second.id])
        self.assertEqual(outcome.status, "merged")
        self.assertEqual(outcome.quotation_id, second.id)

    def test_two_lost_races_raise(self):
        create_quotation(self.db)
        message_id = self._deliver()
        with mock.patch.object(quotation_repo, "apply_reply", return_value=ClaimResult.CONFLICT):
            with self.assertRaises(ConcurrentModification):
                asyncio.run(self.engine.process_message_id(message_id))

    def test_concurrent_duplicate_is_a_no_op(self):
        create_quotation(self.db)
        message_id = self._deliver()
        with mock.patch.object(quotation_repo, "apply_reply", return_value=ClaimResult.DUPLICATE):
            outcome = asyncio.run(self.engine.process_message_id(message_id))
        self.assertEqual(outcome.status, "duplicate")

    def test_manual_reply_merges_into_named_quotation(self):
        q = create_quotation(self.db, supplier_email="fornecedor@padaria.com")
        outcome = asyncio.run(
            self.engine.apply_manual_reply(
                q.id,
                sender="whatsapp@padaria.com",
                subject="Cotação por telefone",
                body="Farinha de trigo R$ 5,80 o kg",
                actor="u1",
                actor_name="Ana",
            )
        )
        self.assertEqual(outcome.status, "merged")
        self.assertEqual(outcome.match_kind, "domain")
        self.assertEqual(outcome.quoted_total, 580.0)
        actions = _actions(self.db, q.id)
        self.assertIn("EMAIL_RECEIVED", actions)
        self.assertIn("EMAIL_PROCESSED_AI", actions)

    def test_manual_reply_on_closed_quotation_is_rejected(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT)
        with self.assertRaises(InvalidStatusTransition):
            asyncio.run(self.engine.apply_manual_reply(q.id, sender="a@b.com", subject="", body="texto longo"))

    def test_manual_reply_resubmitted_is_duplicate_without_new_audit(self):
        q = create_quotation(self.db)

        def submit():
            return asyncio.run(
                self.engine.apply_manual_reply(
                    q.id,
                    sender="fornecedor@padaria.com",
                    subject="Cotação",
                    body="Farinha de trigo R$ 5,80 o kg",
                    message_id="form-42",
                )
            )

        self.assertEqual(submit().status, "merged")
        again = submit()
        self.assertEqual(again.status, "duplicate")
        self.assertEqual(again.quotation_id, q.id)
        self.assertEqual(_actions(self.db, q.id).count("EMAIL_RECEIVED"), 1)


if __name__ == "__main__":
    unittest.main()
