from decimal import Decimal

from cashback_api.services.cashback.money import (
    format_percent,
    normalize_amount,
    quantize_amount,
    to_decimal,
)


def test_to_decimal_defaults_unusable_input_to_zero() -> None:
    assert to_decimal(None) == Decimal("0")
    assert to_decimal(True) == Decimal("0")
    assert to_decimal("not-a-number") == Decimal("0")
    assert to_decimal(float("nan")) == Decimal("0")
    assert to_decimal("Infinity") == Decimal("0")


def test_to_decimal_keeps_float_literal_digits() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(" 12.50 ") == Decimal("12.50")


def test_quantize_amount_rounds_half_up() -> None:
    assert quantize_amount("2.345") == Decimal("2.35")
    assert quantize_amount("2.344") == Decimal("2.34")
    assert quantize_amount(Decimal("0.005")) == Decimal("0.01")


def test_normalize_amount_has_two_decimals_and_no_negative_zero() -> None:
    assert normalize_amount(50) == "50.00"
    assert normalize_amount("12.5") == "12.50"
    assert normalize_amount("-0.001") == "0.00"
    assert normalize_amount(None) == "0.00"


def test_format_percent_drops_trailing_zeros() -> None:
    assert format_percent(Decimal("5.00")) == "5"
    assert format_percent("2.50") == "2.5"
    assert format_percent(10) == "10"
