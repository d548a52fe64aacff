from __future__ import annotations

from typing import Any, Optional

from domain.models import User
from infrastructure.bank_api.provider import BankApi, call_api
from queries._support import parse_one
from queries.base import Query
from queries.registry import register_query


@register_query
class UserQuery(Query):
    name = "user"
    description = "Profile of the signed-in user."
    stale_time = 5 * 60

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> User:
        payload = await call_api(api, "profile", {}, token)
        return parse_one(User, payload, self.name)
