from __future__ import annotations

from typing import Any, Optional

from domain.models import Account
from infrastructure.bank_api.provider import BankApi, call_api
from queries._support import parse_many, parse_one
from queries.base import Query
from queries.registry import register_query


@register_query
class AccountsQuery(Query):
    name = "accounts"
    description = "All accounts of the signed-in user."
    stale_time = 5 * 60

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> list[Account]:
        payload = await call_api(api, "accounts", {}, token)
        return parse_many(Account, payload, self.name)


@register_query
class AccountQuery(Query):
    name = "account"
    description = "One account by id; disabled until an id is known."

    def params(self, account_id: str = "", **kwargs: Any) -> dict[str, Any]:
        return {"account_id": account_id}

    def enabled(self, params: dict[str, Any]) -> bool:
        return bool(params.get("account_id"))

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> Account:
        payload = await call_api(api, "account", {"account_id": params["account_id"]}, token)
        return parse_one(Account, payload, self.name)
