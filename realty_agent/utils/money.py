"""Currency helpers.

Every stored amount is an integer number of centavos. Amounts coming from the
LLM (tool arguments, qualification output) are in reais and may be floats or
colloquial strings such as ``"500 mil"``; they are converted here and nowhere
else.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

Number = Union[int, float, str, Decimal]

_MULTIPLIERS = (
    (re.compile(r"\b(milh[aãoõ]o|milh[oõ]es|mi|mm)\b"), Decimal(1_000_000)),
    (re.compile(r"\b(mil|k)\b"), Decimal(1_000)),
)
_NUMBER = re.compile(r"\d[\d.,]*")


def parse_major_amount(value: Optional[Number]) -> Optional[Decimal]:
    """Parse an amount in reais.

    Accepts numbers and Brazilian-style strings ("R$ 800 mil", "1,5 milhão",
    "800.000,00"). Returns ``None`` when nothing numeric can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        # json.loads accepts NaN and Infinity
        return amount if amount.is_finite() else None

    text = value.strip().lower()
    match = _NUMBER.search(text)
    if not match:
        return None
    amount = _to_decimal(match.group(0))
    if amount is None:
        return None
    tail = text[match.end():]
    for pattern, multiplier in _MULTIPLIERS:
        if pattern.search(tail):
            return amount * multiplier
    return amount


def _to_decimal(raw: str) -> Optional[Decimal]:
    raw = raw.rstrip(".,")
    if "," in raw:
        # pt-BR: "." groups thousands, "," marks decimals
        raw = raw.replace(".", "").replace(",", ".")
    elif raw.count(".") > 1 or re.search(r"\.\d{3}$", raw):
        raw = raw.replace(".", "")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def to_minor_units(value: Optional[Number]) -> Optional[int]:
    amount = parse_major_amount(value)
    if amount is None:
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_brl(cents: int) -> str:
    """50_000_000 -> "R$ 500.000,00"."""
    amount = (Decimal(cents) / 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{amount:,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")
