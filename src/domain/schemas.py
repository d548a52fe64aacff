from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, ValidationInfo, field_validator, model_validator

from domain.models import (
    Account,
    AnalyticsPeriod,
    ApiModel,
    as_utc,
    Currency,
    TransactionCategory,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)


class TransactionFilters(ApiModel):
    """
    Filters for browsing transactions. Every field is optional and all set
    fields must match. Date and amount bounds are inclusive.
    """

    model_config = ConfigDict(frozen=True)

    account_id: Optional[str] = None
    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    status: Optional[TransactionStatus] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def coerce_date(cls, value: Any, info: ValidationInfo) -> Any:
        # Bare dates cover the whole day.
        if isinstance(value, date) and not isinstance(value, datetime):
            bound = time.max if info.field_name == "end_date" else time.min
            return datetime.combine(value, bound, tzinfo=timezone.utc)
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def coerce_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def validate_bounds(self) -> "TransactionFilters":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be <= end_date")
        if self.min_amount is not None and self.max_amount is not None and self.min_amount > self.max_amount:
            raise ValueError("min_amount must be <= max_amount")
        return self


class TransferForm(ApiModel):
    recipient_account: str = Field(min_length=1)
    amount: float = Field(gt=0)
    currency: Currency = Currency.RUB
    description: str = ""
    schedule_date: Optional[datetime] = None
    account_id: Optional[str] = None


class ProfileUpdate(ApiModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    avatar: Optional[str] = None


class Credentials(ApiModel):
    email: str
    password: str


class AuthResult(ApiModel):
    user: User
    token: str = Field(min_length=1)


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    has_next: bool
    has_prev: bool


class PaginatedTransactions(ApiModel):
    data: List[Transaction] = Field(default_factory=list)
    pagination: Pagination


class MonthlyData(ApiModel):
    month: str
    income: float = 0.0
    expense: float = 0.0


class Analytics(ApiModel):
    period: AnalyticsPeriod
    total_income: float
    total_expense: float
    category_summary: Dict[TransactionCategory, float]
    monthly_data: List[MonthlyData] = Field(default_factory=list)


class ExchangeRates(ApiModel):
    base: str = "RUB"
    rates: Dict[str, float] = Field(default_factory=dict)
    fetched_at: Optional[datetime] = None


class AccountCard(ApiModel):
    id: str
    type: str
    currency: str
    account_number: str
    masked_number: str
    balance: str
    available_balance: Optional[str] = None
    is_active: bool


class DashboardOverview(ApiModel):
    accounts: List[Account] = Field(default_factory=list)
    total_balance: float
    recent_transactions: List[Transaction] = Field(default_factory=list)


class SessionSnapshot(ApiModel):
    """The persisted part of the session. is_loading is never stored."""

    user: Optional[User] = None
    token: Optional[str] = None
    is_authenticated: bool = False


class SessionState(SessionSnapshot):
    model_config = ConfigDict(frozen=True)

    is_loading: bool = False
