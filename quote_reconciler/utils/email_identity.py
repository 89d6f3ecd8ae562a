"""Email address normalization and supplier identity matching.

Supplier replies often come from a different mailbox in the same company
(a sales rep answering a quote sent to the purchasing address), so a reply
matches a quotation either exactly or at domain level. Callers prefer exact
hits over domain hits.
"""

import re
from typing import Literal, Optional

MatchKind = Literal["exact", "domain"]

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_BARE_ADDRESS = re.compile(r"[^\s<>\"',;:()]+@[^\s<>\"',;:()]+")


def normalize_address(raw: Optional[str]) -> str:
    """Extract the address from ``"Name <addr>"`` or bare form, lowercased and trimmed."""
    if not raw:
        return ""
    m = _ANGLE_ADDRESS.search(raw)
    if m:
        return m.group(1).strip().lower()
    m = _BARE_ADDRESS.search(raw)
    if m:
        return m.group(0).strip().lower()
    return raw.strip().lower()


def _split(address: str) -> tuple[str, str] | None:
    local, sep, domain = address.rpartition("@")
    if not sep or not local or not domain:
        return None
    return local, domain


def match_identity(candidate: Optional[str], known: Optional[str]) -> Optional[MatchKind]:
    """Compare two addresses: 'exact', 'domain' (same domain, other mailbox) or None.

    Malformed input (empty, no '@') never raises; it simply does not match.
    """
    a = normalize_address(candidate)
    b = normalize_address(known)
    parts_a = _split(a)
    parts_b = _split(b)
    if parts_a is None or parts_b is None:
        return None
    if a == b:
        return "exact"
    if parts_a[1] == parts_b[1]:
        return "domain"
    return None
