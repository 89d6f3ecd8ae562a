"""Offer extractor: turn a supplier reply into a validated ExtractedOffer.

The LLM answers with free text that should be a JSON object. Nothing about
that answer is trusted: fences are stripped, JSON is parsed and validated,
and every failure becomes an ExtractionFailure carrying a safe default offer
so the caller can still record the reply for manual review.
"""

import asyncio
import json
import re
from typing import Optional, Sequence

from pydantic import ValidationError
from pydantic_ai import Agent

from quote_reconciler.config import LLM_TIMEOUT_SECONDS
from quote_reconciler.models.offer import (
    ExtractedOffer,
    ExtractionFailure,
    ExtractionResult,
    ParsedOffer,
)
from quote_reconciler.models.quotation import QuotationItem
from quote_reconciler.utils.logger import get_logger, preview
from quote_reconciler.utils.tracing import get_tracer

logger = get_logger("quote_reconciler.agents.offer")

OFFER_AGENT_ID = "offer_extractor"

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Return the JSON candidate inside a markdown fence, or the outermost {...} span."""
    m = _FENCE.search(text)
    if m:
        text = m.group(1)
    text = text.strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text


def parse_offer_text(text: str) -> ExtractionResult:
    """Validate raw model text into ParsedOffer, or ExtractionFailure with the reason."""
    candidate = strip_code_fences(text or "")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        return ExtractionFailure(error=f"invalid JSON: {e}", raw_text=text)
    if not isinstance(data, dict):
        return ExtractionFailure(error="model output is not a JSON object", raw_text=text)
    try:
        offer = ExtractedOffer.model_validate(data)
    except ValidationError as e:
        return ExtractionFailure(error=f"schema error: {e.error_count()} invalid field(s)", raw_text=text)
    return ParsedOffer(offer=offer, raw_text=text)


def _item_names(items: Sequence[QuotationItem]) -> str:
    names = []
    for item in items:
        if not item.name:
            continue
        if item.quantity is not None:
            unit = f" {item.unit}" if item.unit else ""
            names.append(f"{item.name} ({item.quantity:g}{unit})")
        else:
            names.append(item.name)
    return ", ".join(names) if names else "(not specified)"


class OfferExtractor:
    """Runs the offer agent with a bounded timeout. ``agent=None`` means no LLM is configured."""

    def __init__(
        self,
        agent: Optional[Agent],
        user_prompt_template: str = "Requested items: {item_names}\n\nSupplier email:\n{email_body}",
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.agent = agent
        self.user_prompt_template = user_prompt_template
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.agent is not None

    def build_prompt(self, email_body: str, expected_items: Sequence[QuotationItem]) -> str:
        return self.user_prompt_template.format(
            email_body=email_body, item_names=_item_names(expected_items)
        )

    async def extract(
        self, email_body: str, expected_items: Sequence[QuotationItem]
    ) -> ExtractionResult:
        """Never raises; model errors, timeouts and bad output all yield ExtractionFailure."""
        tracer = get_tracer()
        with tracer.start_as_current_span("offer_extractor.extract") as span:
            span.set_attribute("email.body_length", len(email_body or ""))
            span.set_attribute("offer.expected_items", len(expected_items))
            if self.agent is None:
                logger.warning("offer_extractor.not_configured")
                return ExtractionFailure(error="LLM not configured")
            prompt = self.build_prompt(email_body or "", expected_items)
            try:
                result = await asyncio.wait_for(self.agent.run(prompt), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("offer_extractor.timeout", timeout_seconds=self.timeout)
                span.set_attribute("offer.success", False)
                return ExtractionFailure(error=f"LLM call timed out after {self.timeout:g}s")
            except Exception as e:
                logger.warning("offer_extractor.model_error", error=str(e), error_type=type(e).__name__)
                span.set_attribute("offer.success", False)
                return ExtractionFailure(error=f"LLM call failed: {e}")

            text = str(result.output or "")
            parsed = parse_offer_text(text)
            span.set_attribute("offer.success", parsed.success)
            if parsed.success:
                logger.info(
                    "offer_extractor.parsed",
                    has_quote=parsed.offer.hasQuote,
                    items=len(parsed.offer.items),
                    total=parsed.offer.totalQuote,
                )
            else:
                logger.warning(
                    "offer_extractor.invalid_output",
                    error=parsed.error,
                    output_preview=preview(text),
                )
            return parsed


def build_offer_extractor(registry, api_key: str, timeout: float = LLM_TIMEOUT_SECONDS) -> OfferExtractor:
    """Extractor backed by the configured agent; without an API key the extractor is unconfigured."""
    template = registry.user_prompt_template(OFFER_AGENT_ID)
    if not api_key:
        logger.warning("offer_extractor.no_api_key")
        return OfferExtractor(None, template, timeout)
    try:
        agent = registry.get_agent(OFFER_AGENT_ID)
    except Exception as e:
        logger.error("offer_extractor.agent_init_failed", error=str(e))
        return OfferExtractor(None, template, timeout)
    return OfferExtractor(agent, template, timeout)
