from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timezone
from math import ceil
from typing import Iterable, Optional, Sequence

from domain.errors import NotFound, ValidationError
from domain.models import Transaction, TransactionCategory, TransactionType, as_utc
from domain.schemas import MonthlyData, PaginatedTransactions, Pagination, TransactionFilters


def _as_bound(value: date | datetime, end: bool = False) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.max if end else time.min, tzinfo=timezone.utc)


def group_transactions_by_category(
    transactions: Iterable[Transaction],
) -> dict[TransactionCategory, list[Transaction]]:
    groups: dict[TransactionCategory, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        groups[TransactionCategory.coerce(txn.category)].append(txn)
    return dict(groups)


def calculate_category_summary(transactions: Iterable[Transaction]) -> dict[TransactionCategory, float]:
    """Signed amount per category; categories absent from the input are absent here."""
    return {
        category: sum(txn.amount for txn in txns)
        for category, txns in group_transactions_by_category(transactions).items()
    }


def zero_filled_category_summary(transactions: Iterable[Transaction]) -> dict[TransactionCategory, float]:
    summary = calculate_category_summary(transactions)
    return {category: summary.get(category, 0.0) for category in TransactionCategory}


def filter_transactions_by_period(
    start: date | datetime,
    end: date | datetime,
    transactions: Iterable[Transaction],
) -> list[Transaction]:
    lower = _as_bound(start)
    upper = _as_bound(end, end=True)
    return [txn for txn in transactions if lower <= txn.created_at <= upper]


def sort_transactions_by_date(transactions: Iterable[Transaction]) -> list[Transaction]:
    # sorted() is stable, so equal timestamps keep their input order.
    return sorted(transactions, key=lambda txn: txn.created_at, reverse=True)


def get_recent_transactions(count: int, transactions: Iterable[Transaction]) -> list[Transaction]:
    if count < 0:
        raise ValidationError(f"count must be >= 0, got {count}")
    return sort_transactions_by_date(transactions)[:count]


def _month_start(moment: datetime) -> date:
    return date(moment.year, moment.month, 1)


def _next_month(month: date) -> date:
    if month.month == 12:
        return date(month.year + 1, 1, 1)
    return date(month.year, month.month + 1, 1)


MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def month_label(month: date) -> str:
    # Fixed English names; strftime("%b") follows LC_TIME.
    return f"{MONTH_ABBREVIATIONS[month.month - 1]} {month.year}"


def group_transactions_by_month(
    transactions: Iterable[Transaction],
    fill_gaps: bool = False,
) -> list[MonthlyData]:
    """
    Income and expense totals per calendar month, oldest month first.

    Amounts keep their sign, so ``expense`` is normally negative. Months
    without transactions are left out unless ``fill_gaps`` is set, in which
    case every month between the first and the last one is reported.
    """
    buckets: dict[date, dict[str, float]] = defaultdict(lambda: {"income": 0.0, "expense": 0.0})
    for txn in transactions:
        entry = buckets[_month_start(txn.created_at)]
        if txn.type == TransactionType.INCOME:
            entry["income"] += txn.amount
        elif txn.type == TransactionType.EXPENSE:
            entry["expense"] += txn.amount

    if not buckets:
        return []

    months = sorted(buckets)
    if fill_gaps:
        filled = [months[0]]
        while filled[-1] < months[-1]:
            filled.append(_next_month(filled[-1]))
        months = filled

    return [
        MonthlyData(month=month_label(month), income=buckets[month]["income"], expense=buckets[month]["expense"])
        if month in buckets
        else MonthlyData(month=month_label(month))
        for month in months
    ]


def search_transactions(term: str, transactions: Iterable[Transaction]) -> list[Transaction]:
    needle = (term or "").lower()
    return [txn for txn in transactions if needle in txn.description.lower()]


def search_transactions_and_recipients(term: str, transactions: Iterable[Transaction]) -> list[Transaction]:
    """Description search widened to the recipient field."""
    needle = (term or "").lower()
    return [
        txn
        for txn in transactions
        if needle in txn.description.lower() or needle in (txn.recipient or "").lower()
    ]


def filter_transactions(filters: Optional[TransactionFilters], transactions: Iterable[Transaction]) -> list[Transaction]:
    if filters is None:
        return list(transactions)

    def matches(txn: Transaction) -> bool:
        if filters.account_id and txn.account_id != filters.account_id:
            return False
        if filters.type and txn.type != filters.type:
            return False
        if filters.category and txn.category != filters.category:
            return False
        if filters.status and txn.status != filters.status:
            return False
        if filters.start_date and txn.created_at < filters.start_date:
            return False
        if filters.end_date and txn.created_at > filters.end_date:
            return False
        if filters.min_amount is not None and txn.amount < filters.min_amount:
            return False
        if filters.max_amount is not None and txn.amount > filters.max_amount:
            return False
        return True

    return [txn for txn in transactions if matches(txn)]


def paginate(transactions: Sequence[Transaction], page: int = 1, limit: int = 10) -> PaginatedTransactions:
    if page < 1 or limit < 1:
        raise ValidationError(f"page and limit must be >= 1, got page={page} limit={limit}")
    total = len(transactions)
    offset = (page - 1) * limit
    pages = ceil(total / limit) if total else 0
    return PaginatedTransactions(
        data=list(transactions[offset:offset + limit]),
        pagination=Pagination(page=page, limit=limit, total=total, has_next=page < pages, has_prev=page > 1),
    )


def find_transaction(transaction_id: str, transactions: Iterable[Transaction]) -> Transaction:
    for txn in transactions:
        if txn.id == transaction_id:
            return txn
    raise NotFound(f"Transaction not found: {transaction_id}")
