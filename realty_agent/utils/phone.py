from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Strip everything but digits: "(61) 99999-0000" -> "61999990000"."""
    return _NON_DIGITS.sub("", phone or "")


def redact_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "***"
    return f"***{phone[-4:]}"
