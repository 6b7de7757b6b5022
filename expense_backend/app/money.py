"""Conversions between decimal amounts and integer minor currency units."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNITS_PER_MAJOR = 100
_TWO_PLACES = Decimal("0.01")
# AmountMinor is an INT column on SQL Server.
MAX_AMOUNT_MINOR = 2_147_483_647


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Return ``round(amount * 100)`` using half-up rounding."""

    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * MINOR_UNITS_PER_MAJOR).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / MINOR_UNITS_PER_MAJOR).quantize(_TWO_PLACES)


def format_amount(amount: Decimal, currency: str = "GBP") -> str:
    symbol = {"GBP": "£", "USD": "$", "EUR": "€"}.get(currency.upper())
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f} {currency.upper()}"


MAX_AMOUNT = from_minor_units(MAX_AMOUNT_MINOR)
