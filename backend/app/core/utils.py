"""
Core utilities for Saldo backend.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from uuid import uuid4

KEY_DESCRIPTION_LENGTH = 24
NO_BALANCE_TOKEN = "nobal"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def to_cents(value: float) -> int:
    """Absolute value scaled to an integer number of cents."""
    return int(round(abs(value) * 100))


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(round(moment.timestamp() * 1000))


def key_description(description: str) -> str:
    """Lowercase, strip everything but [a-z0-9], cap the length."""
    return _NON_ALNUM.sub("", description.lower())[:KEY_DESCRIPTION_LENGTH]


def statement_external_key(
    moment: datetime,
    amount: float,
    balance: float | None,
    description: str,
) -> str:
    """Generate the dedup key for an imported statement row.

    The key is stable across repeated parses of the same row and includes
    the time of day, so several equal charges on one date stay distinct.

    Args:
        moment: Raw completed (or started) date-time of the row
        amount: Signed or unsigned amount; only its magnitude is used
        balance: Running balance after the row, if the export has one
        description: Merchant/narrative text

    Returns:
        Key like ``rev_1709648530000_1250_98710_amazonprime``
    """
    balance_part = str(to_cents(balance)) if balance is not None else NO_BALANCE_TOKEN
    return (
        f"rev_{epoch_millis(moment)}_{to_cents(amount)}_{balance_part}"
        f"_{key_description(description)}"
    )


def manual_external_key() -> str:
    """Dedup key for a user-entered transaction."""
    return f"manual_{uuid4().hex}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def balance_doc_id(year: int, month: int) -> str:
    """Store key for a (year, month) balance record."""
    return f"{year:04d}-{month:02d}"


def contains_ci(text: str | None, needle: str) -> bool:
    """Case-insensitive substring test (the store's ilike '%needle%')."""
    return needle.upper() in (text or "").upper()
