"""Narration parsing - derive ledger names and merchants from bank narration text"""

import re
from typing import Optional

TRANSFER_RAIL_MARKERS = ("UPI/",)
MAX_NAME_LENGTH = 100
FALLBACK_NAME = "Bank Transaction"

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9\s]")


def title_case(text: str) -> str:
    """Lower-case everything, then capitalise the first letter of each word"""
    return " ".join(word[:1].upper() + word[1:] for word in text.lower().split(" "))


def extract_merchant(narration: str) -> Optional[str]:
    """
    Extract the merchant token that follows a transfer-rail marker.

    Example:
        "UPI/AMAZON/9876543210" -> "Amazon"
    """
    if not narration:
        return None

    for marker in TRANSFER_RAIL_MARKERS:
        index = narration.find(marker)
        if index == -1:
            continue
        token = narration[index + len(marker):].split("/", 1)[0].strip()
        if token:
            return title_case(token)

    return None


def parse_transaction_name(narration: str) -> str:
    """
    Best-effort display name for a ledger entry.

    Rules, first match wins:
    - transfer-rail marker + merchant token -> "<Merchant> Payment"
    - mentions salary -> "Salary Credit"
    - otherwise the narration with punctuation blanked, capped at 100 chars

    Never raises; unparseable input falls back to a generic label.
    """
    if not narration:
        return FALLBACK_NAME

    merchant = extract_merchant(narration)
    if merchant:
        return f"{merchant} Payment"

    if "salary" in narration.lower():
        return "Salary Credit"

    cleaned = _NON_ALPHANUMERIC.sub(" ", narration).strip()[:MAX_NAME_LENGTH]
    return cleaned or FALLBACK_NAME
