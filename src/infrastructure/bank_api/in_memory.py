from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from analytics.accounts import find_account, get_active_accounts
from analytics.transactions import filter_transactions, find_transaction, sort_transactions_by_date
from domain.errors import HttpError, NotFound
from domain.models import (
    Account,
    AccountType,
    Currency,
    Transaction,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    User,
)
from domain.schemas import ProfileUpdate, TransactionFilters, TransferForm
from infrastructure.bank_api.provider import BankApi

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@bank131.ru"
DEMO_PASSWORD = "demo-password"

DEMO_RATES: dict[str, float] = {
    "USD": 90.25,
    "EUR": 97.80,
    "CNY": 12.45,
    "GBP": 114.30,
}


def demo_user() -> User:
    return User(
        id="1",
        email=DEMO_EMAIL,
        first_name="Evgeny",
        last_name="Ivanov",
        phone_number="+79991234567",
        avatar="https://ui-avatars.com/api/?name=Evgeny+Ivanov&background=0d8abc&color=fff",
        is_verified=True,
        created_at=datetime(2023, 1, 15, tzinfo=timezone.utc),
    )


def demo_accounts() -> list[Account]:
    return [
        Account(
            id="1",
            account_number="4081 7810 0000 1234",
            type=AccountType.CHECKING,
            currency=Currency.RUB,
            balance=150000,
            available_balance=150000,
            is_active=True,
            created_at=datetime(2023, 1, 15, tzinfo=timezone.utc),
        ),
        Account(
            id="2",
            account_number="4081 7810 0000 5678",
            type=AccountType.SAVINGS,
            currency=Currency.USD,
            balance=2500,
            available_balance=2500,
            is_active=True,
            created_at=datetime(2023, 3, 10, tzinfo=timezone.utc),
        ),
    ]


def demo_transactions(now: datetime) -> list[Transaction]:
    def days_ago(days: int) -> datetime:
        return now - timedelta(days=days)

    return [
        Transaction(
            id="1",
            account_id="1",
            type=TransactionType.EXPENSE,
            amount=-1200,
            currency="RUB",
            description="Grocery store",
            status=TransactionStatus.COMPLETED,
            created_at=days_ago(1),
            completed_at=days_ago(1),
            category=TransactionCategory.FOOD,
        ),
        Transaction(
            id="2",
            account_id="1",
            type=TransactionType.INCOME,
            amount=75000,
            currency="RUB",
            description="Salary",
            sender="LLC Employer",
            status=TransactionStatus.COMPLETED,
            created_at=days_ago(2),
            completed_at=days_ago(2),
            category=TransactionCategory.SALARY,
        ),
        Transaction(
            id="3",
            account_id="1",
            type=TransactionType.EXPENSE,
            amount=-800,
            currency="RUB",
            description="Car refuelling",
            status=TransactionStatus.COMPLETED,
            created_at=days_ago(3),
            completed_at=days_ago(3),
            category=TransactionCategory.TRANSPORT,
        ),
    ]


class InMemoryBankApi(BankApi):
    """
    Bank API fake over a fixed in-memory record set.

    Answers use the same ``{"data": ..., "success": true}`` envelope as the
    real API. Every call is recorded in ``calls`` so tests can count fetches.
    """

    name = "in_memory"

    def __init__(
        self,
        user: Optional[User] = None,
        password: str = DEMO_PASSWORD,
        accounts: Optional[Iterable[Account]] = None,
        transactions: Optional[Iterable[Transaction]] = None,
        rates: Optional[dict[str, float]] = None,
        now: Optional[datetime] = None,
        delay: float = 0.0,
    ) -> None:
        self._now = now
        self._user = user or demo_user()
        self._password = password
        self._accounts = list(accounts) if accounts is not None else demo_accounts()
        self._transactions = (
            list(transactions) if transactions is not None else demo_transactions(now or datetime.now(timezone.utc))
        )
        self._rates = dict(rates or DEMO_RATES)
        self._tokens: set[str] = set()
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def issue_token(self) -> str:
        token = f"demo-token-{uuid.uuid4().hex}"
        self._tokens.add(token)
        return token

    async def fetch(self, operation: str, params: Optional[dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        params = dict(params or {})
        self.calls.append((operation, params))
        if self.delay:
            await asyncio.sleep(self.delay)

        handler = getattr(self, "_op_" + operation.replace("-", "_"), None)
        if handler is None:
            raise HttpError(404, f"Unknown operation: {operation}")
        if operation != "login" and token not in self._tokens:
            raise HttpError(401, "Missing or invalid bearer token")

        logger.debug("InMemoryBankApi operation=%s params=%s", operation, params)
        try:
            data = handler(params)
        except NotFound as exc:
            raise HttpError(404, str(exc)) from exc
        except ValidationError as exc:
            raise HttpError(422, f"Invalid parameters for {operation}: {exc}") from exc
        return {"data": data, "success": True}

    def _clock(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    @staticmethod
    def _dump(model: Any) -> dict[str, Any]:
        return model.model_dump(mode="json", by_alias=True)

    def _op_login(self, params: dict[str, Any]) -> dict[str, Any]:
        if params.get("email") != self._user.email or params.get("password") != self._password:
            raise HttpError(401, "Invalid email or password")
        return {"user": self._dump(self._user), "token": self.issue_token()}

    def _op_profile(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._dump(self._user)

    def _op_update_profile(self, params: dict[str, Any]) -> dict[str, Any]:
        changes = ProfileUpdate.model_validate(params).model_dump(exclude_none=True)
        self._user = self._user.model_copy(update=changes)
        return self._dump(self._user)

    def _op_accounts(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return [self._dump(a) for a in self._accounts]

    def _op_account(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._dump(find_account(str(params.get("account_id")), self._accounts))

    def _op_transactions(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        filters = TransactionFilters.model_validate(params) if params else None
        matched = filter_transactions(filters, self._transactions)
        return [self._dump(t) for t in sort_transactions_by_date(matched)]

    def _op_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._dump(find_transaction(str(params.get("transaction_id")), self._transactions))

    def _op_exchange_rates(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"base": "RUB", "rates": dict(self._rates), "fetchedAt": self._clock().isoformat()}

    def _op_create_transfer(self, params: dict[str, Any]) -> dict[str, Any]:
        form = TransferForm.model_validate(params)
        if form.account_id:
            source = find_account(form.account_id, self._accounts)
        else:
            active = get_active_accounts(self._accounts)
            if not active:
                raise HttpError(422, "No active account to transfer from")
            source = active[0]
        if form.amount > source.available_balance:
            raise HttpError(422, "Insufficient funds")

        created = self._clock()
        txn = Transaction(
            id=uuid.uuid4().hex,
            account_id=source.id,
            type=TransactionType.TRANSFER,
            amount=-form.amount,
            currency=form.currency.value,
            description=form.description,
            recipient=form.recipient_account,
            status=TransactionStatus.PENDING,
            created_at=created,
            category=TransactionCategory.TRANSFER,
        )
        self._transactions.append(txn)
        self._accounts = [
            a.model_copy(update={
                "balance": a.balance - form.amount,
                "available_balance": a.available_balance - form.amount,
            }) if a.id == source.id else a
            for a in self._accounts
        ]
        return self._dump(txn)
