"""Minor-unit conversions shared by pricing and provider adapters."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Union

# Every currency the checkout sells in uses two decimal places.
MINOR_UNIT_EXPONENTS: Dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "NGN": 2,
    "GHS": 2,
    "KES": 2,
    "ZAR": 2,
}


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def to_minor_units(amount: Union[Decimal, float, int, str], currency: str) -> int:
    """Convert a major-unit amount to integer minor units, rounding half up."""

    exponent = minor_unit_exponent(currency)
    quantized = (Decimal(str(amount)) * (Decimal(10) ** exponent)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return int(quantized)


def to_major_units(amount: int, currency: str) -> Decimal:
    exponent = minor_unit_exponent(currency)
    return (Decimal(int(amount)) / (Decimal(10) ** exponent)).quantize(Decimal(1).scaleb(-exponent))


def format_major(amount: int, currency: str) -> str:
    return format(to_major_units(amount, currency), "f")


def format_display(amount: int, currency: str, symbol: str = "") -> str:
    """Buyer-facing price such as ``₦15,000.00``."""

    return f"{symbol}{to_major_units(amount, currency):,f}"


__all__ = [
    "MINOR_UNIT_EXPONENTS",
    "format_display",
    "format_major",
    "minor_unit_exponent",
    "to_major_units",
    "to_minor_units",
]
