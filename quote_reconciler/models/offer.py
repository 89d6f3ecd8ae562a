"""Validated shape of a supplier offer as extracted by the LLM.

Field names mirror the JSON schema given to the model (camelCase). Values are
untrusted: prices may arrive as ``"R$ 5,80"``, counts as ``"7 dias"`` and
booleans as ``null``, so everything is coerced before validation.
"""

import re
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SuggestedAction = Literal["confirm", "negotiate", "cancel", "wait"]
SUGGESTED_ACTIONS = ("confirm", "negotiate", "cancel", "wait")

_NUMBER_CHARS = re.compile(r"[^0-9,.\-]")
_FIRST_INT = re.compile(r"-?\d+")
# "1.200" or "12.345.678": dots grouping thousands, no decimal part.
_DOT_THOUSANDS = re.compile(r"-?\d{1,3}(?:\.\d{3})+")

_TRUE_WORDS = {"true", "yes", "y", "sim", "s", "1", "disponivel", "disponível"}
_FALSE_WORDS = {"false", "no", "n", "nao", "não", "0", "indisponivel", "indisponível"}


def parse_decimal(value: Any) -> Optional[float]:
    """Parse a loosely formatted number ("R$ 1.234,56", "5.80", 3) into a float; None if empty."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = _NUMBER_CHARS.sub("", str(value))
    if not text or not any(ch.isdigit() for ch in text):
        return None
    if "," in text and "." in text:
        # The right-most separator is the decimal one.
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".") if text.count(",") == 1 else text.replace(",", "")
    elif _DOT_THOUSANDS.fullmatch(text):
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return None


def coerce_flag(value: Any, default: bool) -> bool:
    """Model booleans arrive as true/false, "sim"/"não", 1/0 or null; anything unclear is ``default``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return default


class ExtractedItem(BaseModel):
    """One line of the supplier's answer."""

    name: str = ""
    unitPrice: Optional[float] = None
    availableQuantity: Optional[float] = None
    unit: Optional[str] = None
    available: bool = True
    partialAvailability: bool = False
    unavailableReason: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("unitPrice", "availableQuantity", mode="before")
    @classmethod
    def _numbers(cls, v):
        return parse_decimal(v)

    @field_validator("available", mode="before")
    @classmethod
    def _available(cls, v):
        return coerce_flag(v, True)

    @field_validator("partialAvailability", mode="before")
    @classmethod
    def _partial(cls, v):
        return coerce_flag(v, False)


class ExtractedOffer(BaseModel):
    """The whole supplier answer."""

    hasQuote: bool = False
    items: list[ExtractedItem] = []
    deliveryDate: Optional[str] = None
    deliveryDays: Optional[int] = None
    hasDelay: bool = False
    delayReason: Optional[str] = None
    paymentTerms: Optional[str] = None
    totalQuote: Optional[float] = None
    supplierNotes: Optional[str] = None
    hasProblems: bool = False
    problemSummary: Optional[str] = None
    suggestedAction: SuggestedAction = "wait"

    model_config = ConfigDict(extra="ignore")

    @field_validator("hasQuote", "hasDelay", "hasProblems", mode="before")
    @classmethod
    def _flags(cls, v):
        return coerce_flag(v, False)

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if isinstance(item, dict)]
        return v

    @field_validator("totalQuote", mode="before")
    @classmethod
    def _total(cls, v):
        return parse_decimal(v)

    @field_validator("deliveryDays", mode="before")
    @classmethod
    def _days(cls, v):
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return int(v)
        match = _FIRST_INT.search(str(v))
        return int(match.group()) if match else None

    @field_validator("deliveryDate", "delayReason", "paymentTerms", "supplierNotes", "problemSummary", mode="before")
    @classmethod
    def _optional_text(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @field_validator("suggestedAction", mode="before")
    @classmethod
    def _action(cls, v):
        action = str(v or "").strip().lower()
        return action if action in SUGGESTED_ACTIONS else "wait"


def safe_default_offer() -> ExtractedOffer:
    """Offer used when extraction failed: no quote, flagged as a problem, wait."""
    return ExtractedOffer(hasQuote=False, hasProblems=True, suggestedAction="wait")


class ParsedOffer(BaseModel):
    success: Literal[True] = True
    offer: ExtractedOffer
    raw_text: str = ""


class ExtractionFailure(BaseModel):
    success: Literal[False] = False
    error: str
    offer: ExtractedOffer = Field(default_factory=safe_default_offer)
    raw_text: Optional[str] = None


ExtractionResult = Union[ParsedOffer, ExtractionFailure]
