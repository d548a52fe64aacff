from __future__ import annotations

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from domain.errors import HttpError
from domain.models import Transaction
from domain.schemas import PaginatedTransactions, TransactionFilters
from infrastructure.bank_api.provider import BankApi, call_api

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_one(model: type[ModelT], payload: Any, operation: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HttpError(502, f"{operation} payload did not match {model.__name__}: {exc}") from exc


def parse_many(model: type[ModelT], payload: Any, operation: str) -> list[ModelT]:
    if not isinstance(payload, list):
        raise HttpError(502, f"Expected a list from {operation}, got {type(payload).__name__}")
    return [parse_one(model, row, operation) for row in payload]


def filters_to_params(filters: Optional[TransactionFilters]) -> dict[str, Any]:
    if filters is None:
        return {}
    return filters.model_dump(mode="json", by_alias=True, exclude_none=True)


async def fetch_transactions(
    api: BankApi,
    token: Optional[str],
    filters: Optional[TransactionFilters] = None,
) -> list[Transaction]:
    payload = await call_api(api, "transactions", filters_to_params(filters), token)
    # Paginated answers carry the rows under "data" next to "pagination".
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        payload = payload["data"]
    return parse_many(Transaction, payload, "transactions")


async def fetch_transaction_page(
    api: BankApi,
    token: Optional[str],
    filters: Optional[TransactionFilters],
    page: int,
    limit: int,
) -> PaginatedTransactions | list[Transaction]:
    """
    One page from the server when it paginates, otherwise every matching row.

    A ``{data, pagination}`` answer is returned as is; a bare list is left
    for the caller to filter and paginate.
    """
    params = filters_to_params(filters)
    params.update(page=page, limit=limit)
    payload = await call_api(api, "transactions", params, token)
    if isinstance(payload, dict) and "pagination" in payload:
        return parse_one(PaginatedTransactions, payload, "transactions")
    return parse_many(Transaction, payload, "transactions")
