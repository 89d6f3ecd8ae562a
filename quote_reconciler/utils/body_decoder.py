"""Extract a readable body from a Gmail multipart payload.

Usage:
    from quote_reconciler.utils.body_decoder import decode_payload

    body = decode_payload(message.payload, snippet=message.snippet)

Fallback chain (first result longer than MIN_BODY_CHARS wins):
    1. direct single-part body
    2. first text/plain part
    3. first text/html part, converted to text
    4. one level into nested multipart/* parts (plain, then html)
    5. the provider snippet

Decoding never raises: a broken part just yields '' and the chain moves on.
"""

import base64
import binascii
from typing import Callable, Optional

from bs4 import BeautifulSoup

from quote_reconciler.config import MIN_BODY_CHARS
from quote_reconciler.mail_provider.gmail_models import MessagePart
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.body_decoder")


def decode_base64url(data: Optional[str]) -> str:
    """Decode Gmail's url-safe base64 (padding optional) to UTF-8 text; '' on failure."""
    if not data:
        return ""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError) as e:
        logger.debug("body_decoder.base64_error", error=str(e))
        return ""
    return raw.decode("utf-8", errors="replace")


def html_to_text(markup: str) -> str:
    """Drop script/style blocks, strip tags, decode entities and collapse whitespace."""
    if not markup.strip():
        return ""
    soup = BeautifulSoup(markup, "lxml")
    for el in soup(["script", "style", "head"]):
        el.decompose()
    text = soup.get_text(separator=" ")
    return " ".join(text.split())


def _usable(text: str) -> bool:
    return len(text) > MIN_BODY_CHARS


def _first_part(parts: list[MessagePart], mime_type: str, convert: Callable[[str], str]) -> str:
    """Return the first part of mime_type whose converted text is usable, else ''."""
    for part in parts:
        if part.mimeType.lower() == mime_type and part.body.data:
            text = convert(decode_base64url(part.body.data))
            if _usable(text):
                return text
    return ""


def _plain(text: str) -> str:
    return text.strip()


def decode_payload(payload: Optional[MessagePart], snippet: str = "") -> str:
    """Return the best human-readable body for a message payload, or the snippet."""
    if payload is None:
        return snippet or ""
    try:
        if payload.body.data and not payload.parts:
            body = decode_base64url(payload.body.data)
            if payload.mimeType.lower() == "text/html":
                body = html_to_text(body)
            if _usable(body.strip()):
                return body.strip()

        parts = payload.parts
        body = _first_part(parts, "text/plain", _plain)
        if body:
            return body
        body = _first_part(parts, "text/html", html_to_text)
        if body:
            return body

        for part in parts:
            if not part.mimeType.lower().startswith("multipart/") or not part.parts:
                continue
            body = _first_part(part.parts, "text/plain", _plain) or _first_part(
                part.parts, "text/html", html_to_text
            )
            if body:
                return body
    except Exception as e:
        # Decoding must never block reconciliation; the snippet is still usable.
        logger.warning("body_decoder.decode_error", error=str(e))

    return snippet or ""
