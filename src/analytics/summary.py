from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from analytics.transactions import (
    filter_transactions_by_period,
    group_transactions_by_month,
    zero_filled_category_summary,
)
from domain.models import AnalyticsPeriod, Transaction, TransactionType, as_utc
from domain.schemas import Analytics


def period_start(period: AnalyticsPeriod, now: datetime) -> datetime:
    """
    Start of the reporting window: the trailing 7 days for a week, otherwise
    the first day of the current calendar month, quarter or year.
    """
    now = as_utc(now)
    period = AnalyticsPeriod(period)
    if period == AnalyticsPeriod.WEEK:
        return now - timedelta(days=7)
    midnight = dict(hour=0, minute=0, second=0, microsecond=0)
    if period == AnalyticsPeriod.MONTH:
        return now.replace(day=1, **midnight)
    if period == AnalyticsPeriod.QUARTER:
        first_month = 3 * ((now.month - 1) // 3) + 1
        return now.replace(month=first_month, day=1, **midnight)
    return now.replace(month=1, day=1, **midnight)


def build_analytics(
    period: AnalyticsPeriod,
    transactions: Iterable[Transaction],
    now: Optional[datetime] = None,
) -> Analytics:
    now = as_utc(now or datetime.now(timezone.utc))
    period = AnalyticsPeriod(period)
    in_period = filter_transactions_by_period(period_start(period, now), now, transactions)

    total_income = sum(t.amount for t in in_period if t.type == TransactionType.INCOME)
    total_expense = abs(sum(t.amount for t in in_period if t.type == TransactionType.EXPENSE))

    return Analytics(
        period=period,
        total_income=round(total_income, 2),
        total_expense=round(total_expense, 2),
        category_summary=zero_filled_category_summary(in_period),
        monthly_data=group_transactions_by_month(in_period),
    )
