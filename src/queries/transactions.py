from __future__ import annotations

from typing import Any, Optional

from analytics.transactions import (
    filter_transactions,
    paginate,
    search_transactions_and_recipients,
    sort_transactions_by_date,
)
from domain.errors import ValidationError
from domain.models import Transaction
from domain.schemas import PaginatedTransactions, TransactionFilters
from infrastructure.bank_api.provider import BankApi, call_api
from queries._support import fetch_transaction_page, fetch_transactions, parse_one
from queries.base import Query
from queries.registry import register_query

MIN_SEARCH_LENGTH = 2


@register_query
class TransactionsQuery(Query):
    name = "transactions"
    description = "Filtered transactions, newest first, one page at a time."
    stale_time = 30

    def params(
        self,
        filters: Optional[TransactionFilters] = None,
        page: int = 1,
        limit: int = 10,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return {"filters": filters, "page": page, "limit": limit}

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> PaginatedTransactions:
        filters: Optional[TransactionFilters] = params.get("filters")
        page, limit = params.get("page", 1), params.get("limit", 10)
        if page < 1 or limit < 1:
            raise ValidationError(f"page and limit must be >= 1, got page={page} limit={limit}")

        result = await fetch_transaction_page(api, token, filters, page, limit)
        if isinstance(result, PaginatedTransactions):
            return result
        # A bare list is every row; the API may ignore some filters, so apply them again.
        matched = sort_transactions_by_date(filter_transactions(filters, result))
        return paginate(matched, page=page, limit=limit)


@register_query
class TransactionQuery(Query):
    name = "transaction"
    description = "One transaction by id; disabled until an id is known."

    def params(self, transaction_id: str = "", **kwargs: Any) -> dict[str, Any]:
        return {"transaction_id": transaction_id}

    def enabled(self, params: dict[str, Any]) -> bool:
        return bool(params.get("transaction_id"))

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> Transaction:
        payload = await call_api(api, "transaction", {"transaction_id": params["transaction_id"]}, token)
        return parse_one(Transaction, payload, self.name)


@register_query
class SearchTransactionsQuery(Query):
    name = "search-transactions"
    description = (
        "Case-insensitive search over description and recipient. Terms shorter "
        f"than {MIN_SEARCH_LENGTH} characters return nothing without calling the API."
    )
    stale_time = 30

    def params(self, term: str = "", **kwargs: Any) -> dict[str, Any]:
        return {"term": term or ""}

    def enabled(self, params: dict[str, Any]) -> bool:
        return len(params.get("term", "")) >= MIN_SEARCH_LENGTH

    def placeholder(self, params: dict[str, Any]) -> list[Transaction]:
        return []

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> list[Transaction]:
        rows = await fetch_transactions(api, token)
        return search_transactions_and_recipients(params["term"], rows)
