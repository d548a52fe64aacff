from __future__ import annotations

import unittest

from queries.base import Query
from queries.registry import QueryRegistry


class _FakeQuery(Query):
    name = "fake"
    description = "Echo query."
    stale_time = 5

    async def load(self, api, params, token):
        return params


class QueryRegistryTests(unittest.TestCase):
    def test_register_and_get_query(self) -> None:
        registry = QueryRegistry()
        query = _FakeQuery()
        registry.register(query)

        self.assertIs(registry.get_query("fake"), query)
        self.assertEqual([spec.name for spec in registry.list_specs()], ["fake"])

    def test_get_missing_query_raises_key_error(self) -> None:
        with self.assertRaises(KeyError):
            QueryRegistry().get_query("missing")

    def test_builtin_queries_self_register_on_import(self) -> None:
        import application.dashboard  # noqa: F401
        from queries.registry import registry as global_registry

        specs = {spec.name: spec for spec in global_registry.list_specs()}
        self.assertEqual(
            set(specs),
            {"accounts", "account", "transactions", "transaction", "analytics", "exchange-rates", "search-transactions", "user"},
        )
        self.assertEqual(specs["accounts"].stale_time, 300)
        self.assertEqual(specs["analytics"].stale_time, 600)
        self.assertEqual(specs["exchange-rates"].refetch_interval, 30)
        self.assertEqual(specs["account"].stale_time, 0)

    def test_query_options_follow_the_definition(self) -> None:
        from queries.registry import registry as global_registry
        import queries.transactions  # noqa: F401

        search = global_registry.get_query("search-transactions")
        short = search.options(search.params(term="a"))
        self.assertFalse(short.enabled)
        self.assertEqual(short.placeholder, [])
        self.assertTrue(search.options(search.params(term="ab")).enabled)
        self.assertEqual(search.options({}).stale_time, 30)

    def test_equal_params_share_a_key(self) -> None:
        query = _FakeQuery()
        self.assertEqual(query.key({"a": 1, "b": 2}), query.key({"b": 2, "a": 1}))


if __name__ == "__main__":
    unittest.main()
