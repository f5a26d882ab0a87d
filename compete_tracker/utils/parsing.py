"""Lenient parsing helpers for scraped and agent-reported values."""

import math
import re
from typing import Any, Optional, Tuple

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def coerce_number(value: Any) -> Optional[float]:
    """Coerce a number or numeric string to float.

    Accepts values like ``12``, ``"12.5"``, ``"$1,299.00"`` or ``"C $45.10"``.
    Returns None for anything that carries no number (including booleans).
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return float(value)

    if not isinstance(value, str):
        return None

    match = _NUMBER_RE.search(value.replace(",", ""))
    if not match:
        return None

    return float(match.group(0))


def parse_compact(value: Any) -> Optional[float]:
    """Parse compact counts such as ``"1.2K"`` or ``"3M"``.

    Plain numbers and numeric strings are passed through ``coerce_number``.
    """
    if isinstance(value, str):
        text = value.strip().upper().replace(",", "")
        multiplier = 1
        if text.endswith("K"):
            multiplier = 1_000
            text = text[:-1]
        elif text.endswith("M"):
            multiplier = 1_000_000
            text = text[:-1]

        number = coerce_number(text)
        if number is None:
            return None
        return number * multiplier

    return coerce_number(value)


def coerce_int(value: Any) -> Optional[int]:
    """Coerce a count (possibly compact) to int."""
    number = parse_compact(value)
    if number is None:
        return None
    return int(round(number))


def extract_rating(feedback: Optional[str]) -> Optional[float]:
    """Pull the numeric rating out of a feedback label like ``"99.8% positive"``."""
    if not feedback:
        return None
    return coerce_number(feedback)


def parse_price_currency(price_text: Optional[str]) -> Tuple[Optional[float], Optional[str]]:
    """Split a displayed price (``"US $19.99"``, ``"C $45.10"``) into amount and currency."""
    if not price_text:
        return None, None

    price = coerce_number(price_text)

    prefix = re.match(r"^([^\d]*)", price_text.strip())
    symbol = prefix.group(1).strip() if prefix else ""

    if "US" in symbol:
        currency = "USD"
    elif "C" in symbol:
        currency = "CAD"
    elif "£" in symbol:
        currency = "GBP"
    elif "€" in symbol:
        currency = "EUR"
    else:
        currency = symbol or None

    return price, currency


def stock_status(quantity: Optional[int]) -> str:
    """Human label for a listing's available quantity."""
    if quantity is None:
        return "Unknown"
    return "In Stock" if quantity > 0 else "Out of Stock"
