from __future__ import annotations

from typing import Iterable

from analytics.formatting import format_account_number, format_currency, mask_card_number
from domain.errors import NotFound
from domain.models import Account
from domain.schemas import AccountCard


def calculate_total_balance(accounts: Iterable[Account]) -> float:
    """
    Plain sum of balances. Currencies are NOT converted: a RUB and a USD
    account add up as raw numbers. Convert first if a single-currency total
    is needed.
    """
    return sum(account.balance for account in accounts)


def get_active_accounts(accounts: Iterable[Account]) -> list[Account]:
    return [account for account in accounts if account.is_active]


def find_account(account_id: str, accounts: Iterable[Account]) -> Account:
    for account in accounts:
        if account.id == account_id:
            return account
    raise NotFound(f"Account not found: {account_id}")


def describe_account(account: Account) -> AccountCard:
    currency = account.currency.value
    available = None
    if account.available_balance != account.balance:
        available = format_currency(currency, account.available_balance)
    return AccountCard(
        id=account.id,
        type=account.type.value,
        currency=currency,
        account_number=format_account_number(account.account_number),
        masked_number=mask_card_number(account.account_number),
        balance=format_currency(currency, account.balance),
        available_balance=available,
        is_active=account.is_active,
    )
