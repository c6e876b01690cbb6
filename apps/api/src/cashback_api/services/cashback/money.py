"""Monetary normalization for cashback balances and ledger amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce numeric-like input into a finite Decimal, defaulting to zero."""

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        candidate = value
    else:
        try:
            # floats go through str() so 0.1 stays 0.1 rather than its binary expansion
            candidate = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            return ZERO
    if not candidate.is_finite():
        return ZERO
    return candidate


def quantize_amount(value: Any) -> Decimal:
    """Round to two decimal places, half-up."""

    quantized = to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    if quantized.is_zero():
        return ZERO.quantize(CENT)
    return quantized


def normalize_amount(value: Any) -> str:
    """Canonical fixed two-decimal string used for every stored amount."""

    return f"{quantize_amount(value):.2f}"


def format_percent(value: Any) -> str:
    """Render a percentage without trailing zeros (``5``, ``2.5``)."""

    normalized = to_decimal(value).normalize()
    return f"{normalized:f}"


__all__ = ["CENT", "ZERO", "format_percent", "normalize_amount", "quantize_amount", "to_decimal"]
