"""Kenyan MSISDN formatting for M-Pesa."""
from __future__ import annotations

import re

from storefront.core.constants import MPESA_COUNTRY_CODE

_NON_DIGITS = re.compile(r"\D")


def format_phone_number(phone: str | None) -> str | None:
    """Normalize a Safaricom number to ``254XXXXXXXXX``.

    Accepts ``254...`` (12 digits), ``07.../01...`` (10 digits) and
    ``7.../1...`` (9 digits), with any spacing or ``+``. Returns None for
    anything else.
    """
    if not phone:
        return None
    digits = _NON_DIGITS.sub("", str(phone))

    if digits.startswith(MPESA_COUNTRY_CODE) and len(digits) == 12:
        formatted = digits
    elif digits.startswith(("07", "01")) and len(digits) == 10:
        formatted = MPESA_COUNTRY_CODE + digits[1:]
    elif digits.startswith(("7", "1")) and len(digits) == 9:
        formatted = MPESA_COUNTRY_CODE + digits
    else:
        return None

    # subscriber part must start with 7 or 1
    if formatted[3] not in "71":
        return None
    return formatted


def is_valid_phone_number(phone: str | None) -> bool:
    return format_phone_number(phone) is not None


def display_phone_number(phone: str | None) -> str:
    """``254712345678`` -> ``+254 712 345 678``; unparseable input is returned as is."""
    formatted = format_phone_number(phone)
    if formatted is None:
        return phone or ""
    return f"+{formatted[:3]} {formatted[3:6]} {formatted[6:9]} {formatted[9:]}"
