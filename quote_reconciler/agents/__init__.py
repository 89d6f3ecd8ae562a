"""LLM agents (Pydantic AI) configured from config/agents.yaml."""

from quote_reconciler.agents.offer_agent import OfferExtractor, build_offer_extractor
from quote_reconciler.agents.registry import AgentRegistry

__all__ = ["AgentRegistry", "OfferExtractor", "build_offer_extractor"]
