from __future__ import annotations

import re

_NON_DIGIT_RE = re.compile(r"\D")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")

CARD_MIN_DIGITS = 13
CARD_MAX_DIGITS = 19


def is_valid_card_number(raw: str) -> bool:
    """Structural Luhn check; says nothing about the issuer."""
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if not CARD_MIN_DIGITS <= len(digits) <= CARD_MAX_DIGITS:
        return False

    checksum = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.fullmatch(value or ""))


def is_valid_phone(value: str) -> bool:
    return bool(PHONE_RE.fullmatch(value or ""))
