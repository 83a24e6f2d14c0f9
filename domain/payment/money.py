"""
Minor-unit conversion for gateway amounts.

Gateways speak integers in the smallest currency unit (paise for INR);
the domain keeps Decimal amounts in major units.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

# ISO-4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP"}


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Decimal, currency: str) -> int:
    exponent = currency_exponent(currency)
    scaled = Decimal(amount) * (Decimal(10) ** exponent)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str) -> Decimal:
    exponent = currency_exponent(currency)
    if exponent == 0:
        return Decimal(int(value))
    return (Decimal(int(value)) / (Decimal(10) ** exponent)).quantize(Decimal(1).scaleb(-exponent))
