from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# Fixed demo rates, from -> to. Not live market data.
EXCHANGE_RATES: dict[str, dict[str, float]] = {
    "RUB": {"USD": 0.011, "EUR": 0.010, "RUB": 1.0},
    "USD": {"RUB": 90.0, "EUR": 0.85, "USD": 1.0},
    "EUR": {"RUB": 100.0, "USD": 1.18, "EUR": 1.0},
}


def _code(currency: object) -> str:
    return str(getattr(currency, "value", currency)).upper()


def get_rate(from_currency: str, to_currency: str) -> float:
    """Unknown pairs fall back to 1.0 rather than failing."""
    return EXCHANGE_RATES.get(_code(from_currency), {}).get(_code(to_currency), 1.0)


def convert_currency(from_currency: str, to_currency: str, amount: float) -> float:
    rate = Decimal(str(get_rate(from_currency, to_currency)))
    converted = (Decimal(str(amount)) * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(converted)
