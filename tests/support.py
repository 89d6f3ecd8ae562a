"""Shared builders for tests: in-memory database, scripted LLM, mock mailbox, app context."""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pydantic_ai import Agent
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from quote_reconciler.agents.offer_agent import OfferExtractor
from quote_reconciler.context import AppContext, Settings
from quote_reconciler.db import Database, init_db
from quote_reconciler.db.repositories import quotation_repo
from quote_reconciler.mail_provider.gmail_mock import GmailMockProvider, build_raw_message
from quote_reconciler.models.quotation import QuotationRecord, QuotationStatus

MAILBOX = "compras@padaria.com"
TOPIC = "projects/padaria/topics/gmail-push"
PROMPT_TEMPLATE = "Requested items: {item_names}\n\nSupplier email:\n{email_body}"

FARINHA_REPLY = (
    "Bom dia! Segue nossa cotação: Farinha de trigo R$ 5,80 o kg, "
    "entrega em 3 dias úteis. Pagamento 28 dias."
)


def make_db() -> Database:
    return init_db("sqlite://")


def make_settings(**overrides: Any) -> Settings:
    values = {
        "mailbox": MAILBOX,
        "pubsub_topic": TOPIC,
        "label_ids": ["INBOX"],
        "candidate_limit": 50,
        "history_page_size": 100,
        "history_max_pages": 10,
        "max_message_attempts": 3,
        "push_verification_token": "",
        "watch_auto_renew": False,
    }
    values.update(overrides)
    return Settings(**values)


def offer_payload(**overrides: Any) -> dict[str, Any]:
    """A well-formed model answer quoting flour at R$ 5,80/kg."""
    payload = {
        "hasQuote": True,
        "items": [
            {
                "name": "Farinha de trigo",
                "unitPrice": "R$ 5,80",
                "availableQuantity": None,
                "unit": "kg",
                "available": True,
                "partialAvailability": False,
                "unavailableReason": None,
            }
        ],
        "deliveryDate": None,
        "deliveryDays": 3,
        "hasDelay": False,
        "delayReason": None,
        "paymentTerms": "28 dias",
        "totalQuote": None,
        "supplierNotes": None,
        "hasProblems": False,
        "problemSummary": None,
        "suggestedAction": "confirm",
    }
    payload.update(overrides)
    return payload


class ScriptedModel:
    """FunctionModel body that answers with fixed text and records every prompt it saw."""

    def __init__(self, text: str):
        self.text = text
        self.calls: list[list[ModelMessage]] = []

    def __call__(self, messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        self.calls.append(messages)
        return ModelResponse(parts=[TextPart(self.text)])

    @property
    def call_count(self) -> int:
        return len(self.calls)


def scripted_extractor(text: str, timeout: float = 5.0) -> tuple[OfferExtractor, ScriptedModel]:
    script = ScriptedModel(text)
    agent = Agent(FunctionModel(script))
    return OfferExtractor(agent, PROMPT_TEMPLATE, timeout=timeout), script


def json_extractor(payload: Optional[dict[str, Any]] = None) -> tuple[OfferExtractor, ScriptedModel]:
    return scripted_extractor(json.dumps(payload if payload is not None else offer_payload()))


def function_extractor(fn: Callable, timeout: float = 5.0) -> OfferExtractor:
    return OfferExtractor(Agent(FunctionModel(fn)), PROMPT_TEMPLATE, timeout=timeout)


def create_quotation(
    db: Database,
    supplier_email: str = "fornecedor@padaria.com",
    status: QuotationStatus = QuotationStatus.SENT,
    items: Optional[list[dict[str, Any]]] = None,
    created_at: Optional[datetime] = None,
    supplier_name: str = "Moinho Dourado",
) -> QuotationRecord:
    return quotation_repo.create_quotation(
        db,
        supplier_id="sup-1",
        supplier_name=supplier_name,
        supplier_email=supplier_email,
        items=items
        if items is not None
        else [{"id": "p-farinha", "name": "Farinha de trigo", "quantity": 100, "unit": "kg"}],
        status=status,
        created_at=created_at,
    )


def minutes_ago(minutes: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


def reply_message(
    message_id: str = "msg-1",
    sender: str = '"João" <fornecedor@padaria.com>',
    subject: str = "Re: Cotação Farinha",
    body: str = FARINHA_REPLY,
    html: bool = False,
) -> dict[str, Any]:
    return build_raw_message(message_id, sender, subject, body, html=html, date="Mon, 12 Oct 2026 09:00:00 -0300")


def make_context(
    db: Database,
    extractor: OfferExtractor,
    provider: Optional[GmailMockProvider] = None,
    settings: Optional[Settings] = None,
) -> AppContext:
    return AppContext(
        settings=settings or make_settings(),
        db=db,
        provider=provider or GmailMockProvider(),
        extractor=extractor,
    )
