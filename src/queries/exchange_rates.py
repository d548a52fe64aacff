from __future__ import annotations

from typing import Any, Optional

from domain.schemas import ExchangeRates
from infrastructure.bank_api.provider import BankApi, call_api
from queries._support import parse_one
from queries.base import Query
from queries.registry import register_query


@register_query
class ExchangeRatesQuery(Query):
    name = "exchange-rates"
    description = "Current exchange rates, refreshed in the background."
    stale_time = 60
    refetch_interval = 30

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> ExchangeRates:
        payload = await call_api(api, "exchange-rates", {}, token)
        if isinstance(payload, dict) and "rates" not in payload:
            # Bare {code: rate} mapping.
            payload = {"rates": payload}
        return parse_one(ExchangeRates, payload, self.name)
