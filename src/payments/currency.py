# src/payments/currency.py — v1
"""Currency display and minor-unit conversion."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal


@dataclass(frozen=True)
class CurrencyInfo:
    symbol: str
    position: Literal["before", "after"]


_CURRENCIES: dict[str, CurrencyInfo] = {
    "usd": CurrencyInfo("$", "before"),
    "cad": CurrencyInfo("C$", "before"),
    "aud": CurrencyInfo("A$", "before"),
    "mxn": CurrencyInfo("$", "before"),
    "sgd": CurrencyInfo("S$", "before"),
    "nzd": CurrencyInfo("NZ$", "before"),
    "eur": CurrencyInfo("€", "after"),
    "gbp": CurrencyInfo("£", "before"),
    "jpy": CurrencyInfo("¥", "before"),
    "chf": CurrencyInfo("CHF", "before"),
    "cny": CurrencyInfo("¥", "before"),
    "inr": CurrencyInfo("₹", "before"),
    "brl": CurrencyInfo("R$", "before"),
    "sek": CurrencyInfo("kr", "after"),
    "nok": CurrencyInfo("kr", "after"),
    "dkk": CurrencyInfo("kr", "after"),
}

# Currencies charged in whole units by the payment processor.
ZERO_DECIMAL = frozenset({"jpy", "krw", "vnd", "clp"})


def get_currency_info(code: str | None) -> CurrencyInfo:
    """Symbol and placement for an ISO code; unknown codes show the code itself."""
    if not code:
        return _CURRENCIES["usd"]
    return _CURRENCIES.get(code.lower(), CurrencyInfo(code.upper(), "before"))


def format_price(amount: str | float, code: str | None = None) -> str:
    """``format_price("10.00", "eur") -> "10.00 €"``."""
    info = get_currency_info(code)
    if info.position == "before":
        return f"{info.symbol} {amount}"
    return f"{amount} {info.symbol}"


def to_minor_units(amount: float | str, code: str) -> int:
    """Convert a display amount into the integer the processor charges."""
    value = Decimal(str(amount))
    if code.lower() not in ZERO_DECIMAL:
        value *= 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
