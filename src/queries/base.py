from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from infrastructure.bank_api.provider import BankApi
from infrastructure.persistence.query_cache import QueryKey, QueryOptions, make_key


@dataclass(frozen=True)
class QuerySpec:
    name: str
    description: str
    stale_time: float
    refetch_interval: Optional[float] = None


class Query(ABC):
    """
    One cacheable read. ``name`` is the operation part of the cache key and
    the pattern that mutations invalidate.
    """

    name: str
    description: str = ""
    stale_time: float = 0.0
    attempts: int = 2
    refetch_interval: Optional[float] = None

    def params(self, **kwargs: Any) -> dict[str, Any]:
        return dict(kwargs)

    def key(self, params: dict[str, Any]) -> QueryKey:
        return make_key(self.name, params)

    def enabled(self, params: dict[str, Any]) -> bool:
        return True

    def placeholder(self, params: dict[str, Any]) -> Any:
        return None

    def options(self, params: dict[str, Any], timeout: Optional[float] = 30.0) -> QueryOptions:
        return QueryOptions(
            stale_time=self.stale_time,
            attempts=self.attempts,
            timeout=timeout,
            enabled=self.enabled(params),
            placeholder=self.placeholder(params),
        )

    @abstractmethod
    async def load(self, api: BankApi, params: dict[str, Any], token: Optional[str]) -> Any:
        raise NotImplementedError

    def spec(self) -> QuerySpec:
        return QuerySpec(
            name=self.name,
            description=self.description,
            stale_time=self.stale_time,
            refetch_interval=self.refetch_interval,
        )
