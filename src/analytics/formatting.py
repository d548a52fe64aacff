from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from domain.errors import InvalidCurrency, TooShort
from domain.models import TransactionCategory

# ru-RU conventions: no-break space for grouping, decimal comma, symbol last.
GROUP_SEPARATOR = "\u00a0"
DECIMAL_SEPARATOR = ","

CURRENCY_SYMBOLS: dict[str, str] = {
    "RUB": "₽",
    "USD": "$",
    "EUR": "€",
}

CATEGORY_COLORS: dict[TransactionCategory, str] = {
    TransactionCategory.FOOD: "#FF6B6B",
    TransactionCategory.TRANSPORT: "#4ECDC4",
    TransactionCategory.ENTERTAINMENT: "#45B7D1",
    TransactionCategory.SHOPPING: "#96CEB4",
    TransactionCategory.UTILITIES: "#FFEAA7",
    TransactionCategory.HEALTHCARE: "#DDA0DD",
    TransactionCategory.EDUCATION: "#98D8C8",
    TransactionCategory.TRANSFER: "#F7DC6F",
    TransactionCategory.SALARY: "#82E0AA",
    TransactionCategory.OTHER: "#AED6F1",
}

_WHITESPACE_RE = re.compile(r"\s+")
_NON_DIGIT_RE = re.compile(r"\D")


def format_currency(currency_code: str, amount: float) -> str:
    """
    Render an amount the way the dashboard shows money, e.g.
    ``format_currency("RUB", 150000)`` -> ``"150 000,00 ₽"``.
    """
    code = str(getattr(currency_code, "value", currency_code)).upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        raise InvalidCurrency(str(currency_code))

    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, fraction = f"{abs(value):.2f}".split(".")
    grouped = f"{int(whole):,}".replace(",", GROUP_SEPARATOR)
    return f"{sign}{grouped}{DECIMAL_SEPARATOR}{fraction}{GROUP_SEPARATOR}{symbol}"


def format_account_number(raw: str) -> str:
    compact = _WHITESPACE_RE.sub("", raw or "")
    return " ".join(compact[i:i + 4] for i in range(0, len(compact), 4))


def mask_card_number(raw: str) -> str:
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if len(digits) < 4:
        raise TooShort(f"Card number needs at least 4 digits, got {len(digits)}")
    return f"**** **** **** {digits[-4:]}"


def get_category_color(category: Any) -> str:
    return CATEGORY_COLORS[TransactionCategory.coerce(category)]
