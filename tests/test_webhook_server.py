"""Tests for the FastAPI app: push endpoint, watch endpoints, quotation and audit APIs."""

import base64
import json
import sys
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent))
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient

from quote_reconciler.db.repositories import checkpoint_repo, quotation_repo
from quote_reconciler.mail_provider.errors import MailProviderError
from quote_reconciler.mail_provider.gmail_mock import GmailMockProvider
from quote_reconciler.models.quotation import QuotationStatus
from quote_reconciler.webhook.server import create_app
from support import (
    MAILBOX,
    create_quotation,
    json_extractor,
    make_context,
    make_db,
    make_settings,
    reply_message,
)


def _push_body(history_id, email_address=MAILBOX) -> dict:
    data = json.dumps({"emailAddress": email_address, "historyId": history_id}).encode("utf-8")
    return {
        "message": {"data": base64.b64encode(data).decode("ascii"), "messageId": "ps-1"},
        "subscription": "projects/padaria/subscriptions/gmail-push",
    }


class TestWebhookServer(unittest.TestCase):
    def setUp(self):
        self.db = make_db()
        self.provider = GmailMockProvider(start_history_id=1000)
        extractor, _ = json_extractor()
        self.ctx = make_context(self.db, extractor, self.provider)
        self.client = TestClient(create_app(context=self.ctx))
        checkpoint_repo.advance(self.db, MAILBOX, "1000")

    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"status": "ok"})

    def test_push_reconciles_reply(self):
        q = create_quotation(self.db)
        marker = self.provider.add_message(reply_message("msg-1"))

        r = self.client.post("/webhook/gmail", json=_push_body(int(marker)))

        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["status"], "processed")
        self.assertEqual(body["outcomes"], {"merged": 1})
        self.assertEqual(body["checkpoint"], marker)
        stored = quotation_repo.get_quotation(self.db, q.id)
        self.assertEqual(stored.status, QuotationStatus.QUOTED)
        self.assertEqual(stored.quoted_total, 580.0)

    def test_push_with_bad_payload_is_accepted(self):
        r = self.client.post("/webhook/gmail", json={"message": {"data": "bm90IGpzb24="}})
        self.assertEqual(r.status_code, 202)
        r = self.client.post("/webhook/gmail", content=b"not json", headers={"content-type": "application/json"})
        self.assertEqual(r.status_code, 202)

    def test_push_processing_error_is_accepted(self):
        with mock.patch.object(self.provider, "list_history", side_effect=RuntimeError("boom")):
            r = self.client.post("/webhook/gmail", json=_push_body(1001))
        self.assertEqual(r.status_code, 202)
        self.assertEqual(checkpoint_repo.get_checkpoint(self.db, MAILBOX).last_history_id, "1000")

    def test_push_token_is_checked_when_configured(self):
        ctx = make_context(self.db, self.ctx.extractor, self.provider, make_settings(push_verification_token="s3cret"))
        client = TestClient(create_app(context=ctx))
        self.assertEqual(client.post("/webhook/gmail", json=_push_body(1001)).status_code, 403)
        self.assertEqual(client.post("/webhook/gmail?token=wrong", json=_push_body(1001)).status_code, 403)
        self.assertEqual(client.post("/webhook/gmail?token=s3cret", json=_push_body(1001)).status_code, 200)

    def test_create_and_fetch_quotation(self):
        r = self.client.post(
            "/quotations",
            json={
                "supplier_name": "Moinho Dourado",
                "supplier_email": "Fornecedor@Padaria.com",
                "items": [{"productId": "p-farinha", "productName": "Farinha de trigo", "quantity": 100, "unit": "kg"}],
                "status": "sent",
                "user_id": "u1",
                "user_name": "Ana",
            },
        )
        self.assertEqual(r.status_code, 201)
        created = r.json()
        self.assertEqual(created["supplier_email"], "fornecedor@padaria.com")
        self.assertEqual(created["items"][0]["id"], "p-farinha")

        fetched = self.client.get(f"/quotations/{created['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.json()["status"], "sent")

    def test_create_rejects_non_initial_status(self):
        r = self.client.post("/quotations", json={"supplier_email": "a@b.com", "status": "quoted"})
        self.assertEqual(r.status_code, 422)

    def test_unknown_quotation_is_404(self):
        self.assertEqual(self.client.get("/quotations/nope").status_code, 404)
        self.assertEqual(self.client.post("/quotations/nope/status", json={"status": "sent"}).status_code, 404)

    def test_status_change(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT)
        ok = self.client.post(f"/quotations/{q.id}/status", json={"status": "sent", "user_name": "Ana"})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["status"], "sent")
        bad = self.client.post(f"/quotations/{q.id}/status", json={"status": "draft"})
        self.assertEqual(bad.status_code, 409)

    def test_send_mails_supplier_and_marks_sent(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT)
        r = self.client.post(f"/quotations/{q.id}/send", json={"user_id": "u1", "user_name": "Ana"})
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertEqual(data["quotation"]["status"], "sent")
        self.assertEqual(data["to"], "fornecedor@padaria.com")
        self.assertEqual(len(self.provider.sent), 1)
        sent = self.provider.sent[0]
        self.assertEqual(sent["id"], data["message_id"])
        self.assertIn("- Farinha de trigo: 100 kg", sent["body"])
        self.assertIn("Prezado(a) Moinho Dourado", sent["body"])
        self.assertTrue(sent["subject"].startswith("Solicitação de Cotação"))
        entries = self.client.get("/audit-logs", params={"quotation_id": q.id}).json()["entries"]
        actions = [e["action"] for e in entries]
        self.assertIn("EMAIL_SENT", actions)
        self.assertIn("STATUS_CHANGE", actions)

    def test_send_with_custom_text_or_no_request_body(self):
        q = create_quotation(self.db, status=QuotationStatus.PENDING)
        r = self.client.post(f"/quotations/{q.id}/send", json={"subject": "Pedido", "body": "Preço da farinha?"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.provider.sent[0]["subject"], "Pedido")
        self.assertEqual(self.provider.sent[0]["body"], "Preço da farinha?")
        q2 = create_quotation(self.db, status=QuotationStatus.DRAFT)
        self.assertEqual(self.client.post(f"/quotations/{q2.id}/send").status_code, 200)

    def test_send_refused_for_already_sent_quotation(self):
        q = create_quotation(self.db, status=QuotationStatus.SENT)
        self.assertEqual(self.client.post(f"/quotations/{q.id}/send").status_code, 409)
        self.assertEqual(self.provider.sent, [])

    def test_send_failure_leaves_quotation_untouched(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT)
        with mock.patch.object(self.provider, "send_message", side_effect=MailProviderError("quota")):
            r = self.client.post(f"/quotations/{q.id}/send")
        self.assertEqual(r.status_code, 502)
        self.assertEqual(quotation_repo.get_quotation(self.db, q.id).status, QuotationStatus.DRAFT)

    def test_send_without_supplier_email_is_422(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT, supplier_email="")
        self.assertEqual(self.client.post(f"/quotations/{q.id}/send").status_code, 422)

    def test_manual_reply(self):
        q = create_quotation(self.db)
        r = self.client.post(
            f"/quotations/{q.id}/reply",
            json={"from": "fornecedor@padaria.com", "subject": "Cotação", "body": "Farinha R$ 5,80/kg"},
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "merged")
        again = self.client.post(
            f"/quotations/{q.id}/reply",
            json={"from": "fornecedor@padaria.com", "body": "Outra resposta"},
        )
        self.assertEqual(again.status_code, 409)

    def test_low_stock_creates_single_draft(self):
        payload = {
            "stock": {
                "product_id": "p-fermento",
                "name": "Fermento",
                "package_quantity": 2,
                "package_count": 1,
                "min_stock": 5,
                "max_stock": 20,
                "unit": "kg",
            },
            "supplier": {"id": "s1", "name": "Distribuidora", "email": "vendas@distribuidora.com"},
        }
        first = self.client.post("/quotations/low-stock", json=payload).json()
        self.assertTrue(first["created"])
        self.assertEqual(first["quotation"]["status"], "draft")
        self.assertEqual(first["quotation"]["items"][0]["quantity"], 18)
        second = self.client.post("/quotations/low-stock", json=payload).json()
        self.assertFalse(second["created"])
        self.assertEqual(second["reason"], "open_quotation_exists")

    def test_audit_logs_newest_first(self):
        q = create_quotation(self.db, status=QuotationStatus.DRAFT)
        self.client.post(f"/quotations/{q.id}/status", json={"status": "sent"})
        r = self.client.get("/audit-logs", params={"quotation_id": q.id})
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["count"], 2)
        self.assertEqual([e["action"] for e in body["entries"]], ["STATUS_CHANGE", "CREATE"])
        self.assertEqual(self.client.get("/audit-logs", params={"quotation_id": " "}).status_code, 400)

    def test_gmail_status(self):
        r = self.client.get("/gmail/status")
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertFalse(body["token"]["has_token"])
        self.assertFalse(body["can_send_email"])
        self.assertFalse(body["watch"]["watch_active"])
        self.assertTrue(body["llm_configured"])

    def test_watch_setup_and_renew(self):
        r = self.client.post("/gmail/watch")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "watching")
        self.assertTrue(self.provider.watching)
        self.assertEqual(self.client.post("/gmail/watch/renew").json()["status"], "renewed")

    def test_watch_without_topic_is_400(self):
        ctx = make_context(self.db, self.ctx.extractor, self.provider, make_settings(pubsub_topic=""))
        client = TestClient(create_app(context=ctx))
        self.assertEqual(client.post("/gmail/watch").status_code, 400)

    def test_failed_renewal_is_502(self):
        with mock.patch.object(self.provider, "watch", side_effect=MailProviderError("quota")):
            self.assertEqual(self.client.post("/gmail/watch/renew").status_code, 502)


if __name__ == "__main__":
    unittest.main()
