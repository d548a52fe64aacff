from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class TransactionCategory(str, Enum):
    FOOD = "food"
    TRANSPORT = "transport"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    UTILITIES = "utilities"
    HEALTHCARE = "healthcare"
    EDUCATION = "education"
    TRANSFER = "transfer"
    SALARY = "salary"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> "TransactionCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"


class Currency(str, Enum):
    RUB = "RUB"
    USD = "USD"
    EUR = "EUR"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AnalyticsPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


def as_utc(value: datetime) -> datetime:
    """Naive timestamps from the API are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ApiModel(BaseModel):
    """Wire records: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(ApiModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: str
    avatar: Optional[str] = None
    is_verified: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def coerce_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Account(ApiModel):
    model_config = ConfigDict(frozen=True)

    id: str
    account_number: str
    type: AccountType
    currency: Currency
    balance: float
    available_balance: float
    is_active: bool = True
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def coerce_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Transaction(ApiModel):
    model_config = ConfigDict(frozen=True)

    id: str
    account_id: str
    type: TransactionType
    amount: float
    currency: str
    description: str = ""
    recipient: Optional[str] = None
    sender: Optional[str] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    created_at: datetime
    completed_at: Optional[datetime] = None
    category: TransactionCategory = TransactionCategory.OTHER

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, value: Any) -> TransactionCategory:
        return TransactionCategory.coerce(value)

    @field_validator("created_at", "completed_at")
    @classmethod
    def coerce_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None
