from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from domain.errors import FetchTimeout, HttpError, NetworkError
from infrastructure.persistence.query_cache import (
    QueryCache,
    QueryOptions,
    fetch_with_retries,
    make_key,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class _Loader:
    """Returns (or raises) ``results`` in order, repeating the last one."""

    def __init__(self, *results, gate: asyncio.Event | None = None) -> None:
        self.results = list(results)
        self.gate = gate
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self.results[min(self.calls, len(self.results)) - 1]
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(result, BaseException):
            raise result
        return result


KEY = make_key("accounts", {})


class MakeKeyTests(unittest.TestCase):
    def test_equal_params_give_equal_keys(self) -> None:
        self.assertEqual(make_key("transactions", {"page": 1, "limit": 10}), make_key("transactions", {"limit": 10, "page": 1}))
        self.assertNotEqual(make_key("transactions", {"page": 1}), make_key("transactions", {"page": 2}))
        self.assertEqual(make_key("accounts")[0], "accounts")


class QueryCacheReadTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.cache = QueryCache(max_entries=8, retry_delay=0, clock=self.clock)

    async def test_concurrent_reads_share_one_fetch(self) -> None:
        gate = asyncio.Event()
        loader = _Loader(["a"], gate=gate)

        first = asyncio.ensure_future(self.cache.get(KEY, loader))
        second = asyncio.ensure_future(self.cache.get(KEY, loader))
        await asyncio.sleep(0)
        self.assertTrue(self.cache.is_fetching(KEY))
        gate.set()

        self.assertEqual(await asyncio.gather(first, second), [["a"], ["a"]])
        self.assertEqual(loader.calls, 1)
        self.assertFalse(self.cache.is_fetching(KEY))

    async def test_fresh_entries_are_served_from_cache(self) -> None:
        loader = _Loader("v1", "v2")
        options = QueryOptions(stale_time=10)

        self.assertEqual(await self.cache.get(KEY, loader, options), "v1")
        self.clock.now = 9.9
        self.assertEqual(await self.cache.get(KEY, loader, options), "v1")
        self.assertEqual(loader.calls, 1)

        self.clock.now = 10.0
        self.assertEqual(await self.cache.get(KEY, loader, options), "v2")
        self.assertEqual(loader.calls, 2)

    async def test_zero_stale_time_always_refetches(self) -> None:
        loader = _Loader("v1", "v2")
        await self.cache.get(KEY, loader)
        self.assertEqual(await self.cache.get(KEY, loader), "v2")

    async def test_refetch_ignores_freshness(self) -> None:
        loader = _Loader("v1", "v2")
        options = QueryOptions(stale_time=60)
        await self.cache.get(KEY, loader, options)
        self.assertEqual(await self.cache.refetch(KEY, loader, options), "v2")

    async def test_disabled_query_returns_placeholder_without_fetching(self) -> None:
        loader = _Loader("never")
        result = await self.cache.get(KEY, loader, QueryOptions(enabled=False, placeholder=[]))
        self.assertEqual(result, [])
        self.assertEqual(loader.calls, 0)
        self.assertIsNone(self.cache.peek(KEY))

    async def test_abandoned_reader_does_not_cancel_the_shared_fetch(self) -> None:
        gate = asyncio.Event()
        loader = _Loader("shared", gate=gate)

        impatient = asyncio.ensure_future(self.cache.get(KEY, loader))
        patient = asyncio.ensure_future(self.cache.get(KEY, loader))
        await asyncio.sleep(0)
        impatient.cancel()
        gate.set()

        self.assertEqual(await patient, "shared")
        self.assertEqual(self.cache.peek(KEY).data, "shared")


class QueryCacheInvalidationTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.cache = QueryCache(max_entries=8, retry_delay=0, clock=_Clock())
        self.events = []
        self.cache.subscribe(lambda event: self.events.append(event.kind))

    async def test_invalidate_by_operation_forces_refetch(self) -> None:
        loader = _Loader("v1", "v2")
        options = QueryOptions(stale_time=300)
        other = make_key("user", {})
        await self.cache.get(KEY, loader, options)
        self.cache.set(other, "profile", stale_time=300)

        self.assertEqual(self.cache.invalidate("accounts"), 1)
        self.assertTrue(self.cache.peek(KEY).invalidated)
        self.assertFalse(self.cache.peek(other).invalidated)
        self.assertIn("invalidated", self.events)

        self.assertEqual(await self.cache.get(KEY, loader, options), "v2")
        self.assertFalse(self.cache.peek(KEY).invalidated)

    async def test_invalidate_by_predicate_and_exact_key(self) -> None:
        self.cache.set(make_key("transactions", {"page": 1}), [], stale_time=30)
        self.cache.set(make_key("transactions", {"page": 2}), [], stale_time=30)
        self.cache.set(KEY, [], stale_time=30)

        self.assertEqual(self.cache.invalidate(make_key("transactions", {"page": 2})), 1)
        self.assertEqual(self.cache.invalidate(lambda key: key[0] in {"transactions", "accounts"}), 3)

    async def test_response_superseded_by_newer_fetch_is_discarded(self) -> None:
        old_gate, new_gate = asyncio.Event(), asyncio.Event()
        old_loader = _Loader("old", gate=old_gate)
        new_loader = _Loader("new", gate=new_gate)

        old_read = asyncio.ensure_future(self.cache.get(KEY, old_loader))
        await asyncio.sleep(0)
        self.cache.invalidate("accounts")
        new_read = asyncio.ensure_future(self.cache.get(KEY, new_loader))
        await asyncio.sleep(0)

        new_gate.set()
        self.assertEqual(await new_read, "new")
        with self.assertLogs("infrastructure.persistence.query_cache", level="INFO") as logs:
            old_gate.set()
            self.assertEqual(await old_read, "new")

        self.assertEqual(self.cache.peek(KEY).data, "new")
        self.assertIn("stale-write", self.events)
        self.assertTrue(any("Discarded response" in line for line in logs.output))

    async def test_response_issued_before_invalidation_is_stored_stale(self) -> None:
        gate = asyncio.Event()
        loader = _Loader("before", gate=gate)

        read = asyncio.ensure_future(self.cache.get(KEY, loader, QueryOptions(stale_time=300)))
        await asyncio.sleep(0)
        self.cache.invalidate("accounts")
        gate.set()

        self.assertEqual(await read, "before")
        self.assertTrue(self.cache.peek(KEY).invalidated)

    async def test_clear_drops_everything_including_in_flight_responses(self) -> None:
        gate = asyncio.Event()
        loader = _Loader("late", gate=gate)
        self.cache.set(make_key("user", {}), "profile")

        read = asyncio.ensure_future(self.cache.get(KEY, loader))
        await asyncio.sleep(0)
        self.cache.clear()
        gate.set()

        self.assertEqual(await read, "late")
        self.assertEqual(self.cache.keys(), [])


class QueryCacheFailureTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.cache = QueryCache(max_entries=8, retry_delay=0, clock=self.clock)

    async def test_transient_failure_is_retried(self) -> None:
        loader = _Loader(NetworkError("reset"), "ok")
        self.assertEqual(await self.cache.get(KEY, loader, QueryOptions(attempts=2)), "ok")
        self.assertEqual(loader.calls, 2)

    async def test_server_errors_are_retried_until_attempts_run_out(self) -> None:
        loader = _Loader(HttpError(503))
        with self.assertRaises(HttpError):
            await self.cache.get(KEY, loader, QueryOptions(attempts=3))
        self.assertEqual(loader.calls, 3)

    async def test_client_errors_are_not_retried(self) -> None:
        loader = _Loader(HttpError(400), "never")
        with self.assertRaises(HttpError):
            await self.cache.get(KEY, loader, QueryOptions(attempts=3))
        self.assertEqual(loader.calls, 1)

    async def test_failure_keeps_the_previous_value(self) -> None:
        events = []
        self.cache.subscribe(lambda event: events.append(event.kind))
        self.cache.set(KEY, "cached", stale_time=1)
        self.clock.now = 5

        with self.assertRaises(NetworkError):
            await self.cache.get(KEY, _Loader(NetworkError("down")), QueryOptions(attempts=1))

        self.assertEqual(self.cache.peek(KEY).data, "cached")
        self.assertIn("failed", events)
        self.assertFalse(self.cache.is_fetching(KEY))

    async def test_each_attempt_is_bounded_by_the_timeout(self) -> None:
        async def slow():
            await asyncio.sleep(1)
            return "late"

        with self.assertRaises(FetchTimeout):
            await self.cache.get(KEY, slow, QueryOptions(attempts=1, timeout=0.01))


class FetchWithRetriesTests(unittest.IsolatedAsyncioTestCase):
    async def test_backoff_doubles_between_attempts(self) -> None:
        loader = _Loader(NetworkError("a"), NetworkError("b"), "ok")
        with patch("infrastructure.persistence.query_cache.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await fetch_with_retries("accounts", loader, attempts=3, timeout=None, retry_delay=0.5)

        self.assertEqual(result, "ok")
        self.assertEqual([call.args[0] for call in sleep.await_args_list], [0.5, 1.0])

    async def test_single_attempt_does_not_retry(self) -> None:
        loader = _Loader(NetworkError("a"), "ok")
        with self.assertRaises(NetworkError):
            await fetch_with_retries("create-transfer", loader, attempts=1, retry_delay=0)
        self.assertEqual(loader.calls, 1)


class QueryCacheEvictionTests(unittest.IsolatedAsyncioTestCase):
    async def test_least_recently_used_entry_is_evicted(self) -> None:
        cache = QueryCache(max_entries=2, retry_delay=0, clock=_Clock())
        a, b, c = make_key("a"), make_key("b"), make_key("c")
        evicted = []
        cache.subscribe(lambda event: evicted.append(event.key) if event.kind == "evicted" else None)

        cache.set(a, 1, stale_time=60)
        cache.set(b, 2, stale_time=60)
        await cache.get(a, _Loader("unused"), QueryOptions(stale_time=60))
        cache.set(c, 3, stale_time=60)

        self.assertEqual(set(cache.keys()), {a, c})
        self.assertEqual(evicted, [b])


class BackgroundRefreshTests(unittest.IsolatedAsyncioTestCase):
    async def test_refetches_on_interval_until_stopped(self) -> None:
        cache = QueryCache(max_entries=8, retry_delay=0)
        loader = _Loader("r1", "r2", "r3")

        task = cache.refetch_every(KEY, loader, QueryOptions(stale_time=60), interval=0.01)
        self.assertIs(cache.refetch_every(KEY, loader, QueryOptions(), interval=0.01), task)
        await asyncio.sleep(0.08)
        await cache.stop_refreshing()

        self.assertGreaterEqual(loader.calls, 2)
        self.assertTrue(task.done())
        self.assertIn(cache.peek(KEY).data, {"r1", "r2", "r3"})

    async def test_failures_do_not_stop_the_loop(self) -> None:
        cache = QueryCache(max_entries=8, retry_delay=0)
        loader = _Loader(HttpError(400), "recovered")

        with self.assertLogs("infrastructure.persistence.query_cache", level="WARNING"):
            cache.refetch_every(KEY, loader, QueryOptions(attempts=1), interval=0.01)
            await asyncio.sleep(0.08)
        await cache.stop_refreshing()

        self.assertEqual(cache.peek(KEY).data, "recovered")

    async def test_unexpected_errors_are_logged_and_do_not_stop_the_loop(self) -> None:
        cache = QueryCache(max_entries=8, retry_delay=0)
        loader = _Loader(ValueError("relative URL without a base"), "recovered")

        with self.assertLogs("infrastructure.persistence.query_cache", level="ERROR") as logs:
            task = cache.refetch_every(KEY, loader, QueryOptions(attempts=1), interval=0.01)
            await asyncio.sleep(0.08)
        self.assertFalse(task.done())
        await cache.stop_refreshing()

        self.assertTrue(any("background refresh crashed" in line for line in logs.output))
        self.assertEqual(cache.peek(KEY).data, "recovered")
        self.assertTrue(task.cancelled())


if __name__ == "__main__":
    unittest.main()
