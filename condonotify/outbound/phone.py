"""
Phone normalisation for WhatsApp gateways.

Gateways expect the bare international digit string (no "+", spaces or
punctuation). Length is not validated; a malformed number simply fails at the
provider.
"""

from __future__ import annotations

import re

DEFAULT_COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    "(11) 98765-4321"  -> "5511987654321"
    "+55 11 98765-4321" -> "5511987654321"
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith(country_code):
        return digits
    return f"{country_code}{digits}"
