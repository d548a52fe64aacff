from __future__ import annotations

from queries.base import Query, QuerySpec


class QueryRegistry:
    def __init__(self):
        self._queries: dict[str, Query] = {}

    def register(self, query: Query) -> None:
        self._queries[query.name] = query

    def get_query(self, name: str) -> Query:
        if name not in self._queries:
            raise KeyError(f"Query not registered: {name}")
        return self._queries[name]

    def list_specs(self) -> list[QuerySpec]:
        return [query.spec() for query in self._queries.values()]


registry = QueryRegistry()


def register_query(query_cls: type[Query]) -> type[Query]:
    registry.register(query_cls())
    return query_cls
