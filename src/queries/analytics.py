from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from analytics.summary import build_analytics, period_start
from domain.models import AnalyticsPeriod
from domain.schemas import Analytics, TransactionFilters
from infrastructure.bank_api.provider import BankApi
from queries._support import fetch_transactions
from queries.base import Query
from queries.registry import register_query


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@register_query
class AnalyticsQuery(Query):
    name = "analytics"
    description = "Income, expense, category and monthly totals for a week, month, quarter or year."
    stale_time = 10 * 60

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def params(self, period: AnalyticsPeriod | str = AnalyticsPeriod.MONTH, **kwargs: Any) -> dict[str, Any]:
        return {"period": AnalyticsPeriod(period)}

    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> Analytics:
        period = AnalyticsPeriod(params["period"])
        now = self._clock()
        rows = await fetch_transactions(api, token, TransactionFilters(start_date=period_start(period, now), end_date=now))
        return build_analytics(period, rows, now)
