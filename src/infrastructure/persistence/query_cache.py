from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from domain.errors import DashboardError, FetchTimeout, NetworkError, StaleWrite

logger = logging.getLogger(__name__)

QueryKey = tuple[str, str]
Loader = Callable[[], Awaitable[Any]]
Listener = Callable[["CacheEvent"], None]
KeyPattern = Union[str, QueryKey, Callable[[QueryKey], bool]]


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", exclude_none=True)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def make_key(operation: str, params: Any = None) -> QueryKey:
    """(operation, canonical JSON of params): equal params give equal keys."""
    return operation, json.dumps(params, sort_keys=True, default=_json_default, separators=(",", ":"))


async def fetch_with_retries(
    operation: str,
    loader: Loader,
    attempts: int = 2,
    timeout: Optional[float] = 30.0,
    retry_delay: float = 1.0,
) -> Any:
    """
    Run ``loader`` up to ``attempts`` times. Only transient ``NetworkError``s
    (including timeouts) are retried, with exponential backoff starting at
    ``retry_delay`` seconds.
    """
    attempts = max(1, attempts)
    attempt = 1
    while True:
        try:
            if timeout is None:
                return await loader()
            try:
                return await asyncio.wait_for(loader(), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise FetchTimeout(f"{operation} timed out after {timeout:.1f}s") from exc
        except NetworkError as exc:
            if not exc.transient or attempt >= attempts:
                logger.warning("Fetch failed operation=%s attempt=%d/%d: %s", operation, attempt, attempts, exc)
                raise
            delay = retry_delay * (2 ** (attempt - 1))
            logger.warning("Retrying operation=%s attempt=%d/%d in %.2fs: %s", operation, attempt, attempts, delay, exc)
        if delay > 0:
            await asyncio.sleep(delay)
        attempt += 1


@dataclass(frozen=True)
class QueryOptions:
    stale_time: float = 0.0
    attempts: int = 2
    timeout: Optional[float] = 30.0
    enabled: bool = True
    placeholder: Any = None


@dataclass
class CacheEntry:
    data: Any
    fetched_at: float
    stale_time: float
    ticket: int
    invalidated: bool = False

    def is_stale(self, now: float) -> bool:
        return self.invalidated or now - self.fetched_at >= self.stale_time


@dataclass(frozen=True)
class CacheEvent:
    kind: str  # "updated" | "invalidated" | "failed" | "evicted" | "stale-write"
    key: QueryKey


class QueryCache:
    """
    Keyed cache for async fetches.

    - fresh entries (younger than their stale_time) are served without fetching
    - at most one fetch per key is in flight; concurrent readers share it
    - every fetch gets an increasing ticket; a response older than the stored
      entry is dropped, and a response issued before an invalidation is kept
      only as an already-stale fallback
    - transient ``NetworkError``s are retried with exponential backoff, and a
      failed fetch never replaces the cached value
    - least recently used entries are evicted past ``max_entries``

    Meant for a single asyncio event loop. State changes happen between
    awaits and need no lock; sharing an instance across OS threads is not
    supported.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        retry_delay: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries or int(os.getenv("QUERY_CACHE_MAX_ENTRIES", "256"))
        self.retry_delay = retry_delay if retry_delay is not None else float(os.getenv("QUERY_RETRY_DELAY_SECONDS", "1.0"))
        self._clock = clock
        self._entries: OrderedDict[QueryKey, CacheEntry] = OrderedDict()
        self._in_flight: dict[QueryKey, tuple[int, asyncio.Future]] = {}
        self._invalidated_through: dict[QueryKey, int] = {}
        self._cleared_through = 0
        self._issued = 0
        self._listeners: list[Listener] = []
        self._refreshers: dict[QueryKey, asyncio.Task] = {}

    # ---- reads ----
    async def get(self, key: QueryKey, loader: Loader, options: QueryOptions | None = None) -> Any:
        options = options or QueryOptions()
        if not options.enabled:
            return options.placeholder

        entry = self._entries.get(key)
        if entry is not None and not entry.is_stale(self._clock()):
            self._entries.move_to_end(key)
            return entry.data

        # Shielded: a caller that stops waiting must not cancel the shared fetch.
        return await asyncio.shield(self._start_fetch(key, loader, options))

    async def refetch(self, key: QueryKey, loader: Loader, options: QueryOptions | None = None) -> Any:
        """Fetch even if the cached value is fresh (joins an in-flight fetch)."""
        return await asyncio.shield(self._start_fetch(key, loader, options or QueryOptions()))

    def peek(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._in_flight

    def keys(self) -> list[QueryKey]:
        return list(self._entries.keys())

    # ---- writes ----
    def set(self, key: QueryKey, data: Any, stale_time: float = 0.0) -> None:
        self._issued += 1
        self._put(key, CacheEntry(data=data, fetched_at=self._clock(), stale_time=stale_time, ticket=self._issued))

    def invalidate(self, pattern: KeyPattern) -> int:
        """
        Mark matching entries stale and detach matching in-flight fetches.

        ``pattern`` is an operation name, an exact key or a predicate on keys.
        Returns the number of keys affected.
        """
        if isinstance(pattern, str):
            match = lambda key: key[0] == pattern  # noqa: E731
        elif isinstance(pattern, tuple):
            match = lambda key: key == pattern  # noqa: E731
        else:
            match = pattern

        keys = [k for k in self._entries if match(k)]
        keys += [k for k in self._in_flight if match(k) and k not in self._entries]
        for key in keys:
            entry = self._entries.get(key)
            if entry is not None:
                entry.invalidated = True
            self._invalidated_through[key] = self._issued
            self._in_flight.pop(key, None)
            self._emit("invalidated", key)

        logger.info("QueryCache invalidated pattern=%s keys=%d", getattr(pattern, "__name__", pattern), len(keys))
        return len(keys)

    def clear(self) -> None:
        """Forget everything; responses still in flight are discarded when they land."""
        self._cleared_through = self._issued
        self._entries.clear()
        self._in_flight.clear()
        self._invalidated_through.clear()
        logger.info("QueryCache cleared")

    # ---- observers ----
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, key: QueryKey) -> None:
        event = CacheEvent(kind=kind, key=key)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("QueryCache listener failed event=%s operation=%s", kind, key[0])

    # ---- background refresh ----
    def refetch_every(self, key: QueryKey, loader: Loader, options: QueryOptions, interval: float) -> asyncio.Task:
        existing = self._refreshers.get(key)
        if existing is not None and not existing.done():
            return existing

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.refetch(key, loader, options)
                except DashboardError as exc:
                    logger.warning("QueryCache background refresh failed operation=%s: %s", key[0], exc)
                except Exception:
                    logger.exception("QueryCache background refresh crashed operation=%s", key[0])

        task = asyncio.ensure_future(_loop())
        self._refreshers[key] = task
        logger.info("QueryCache background refresh started operation=%s interval=%.1fs", key[0], interval)
        return task

    async def stop_refreshing(self) -> None:
        tasks = list(self._refreshers.values())
        self._refreshers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # ---- internals ----
    def _start_fetch(self, key: QueryKey, loader: Loader, options: QueryOptions) -> asyncio.Future:
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            logger.debug("QueryCache joining in-flight fetch operation=%s ticket=%d", key[0], in_flight[0])
            return in_flight[1]

        self._issued += 1
        ticket = self._issued
        task = asyncio.ensure_future(self._run(key, ticket, loader, options))
        task.add_done_callback(_consume_result)
        self._in_flight[key] = (ticket, task)
        return task

    async def _run(self, key: QueryKey, ticket: int, loader: Loader, options: QueryOptions) -> Any:
        started = time.perf_counter()
        try:
            data = await self._load_with_retries(key, loader, options)
        except Exception:
            self._emit("failed", key)
            raise
        finally:
            current = self._in_flight.get(key)
            if current is not None and current[0] == ticket:
                del self._in_flight[key]

        logger.info("QueryCache fetched operation=%s ticket=%d in %.2fs", key[0], ticket, time.perf_counter() - started)
        return self._store(key, ticket, data, options)

    async def _load_with_retries(self, key: QueryKey, loader: Loader, options: QueryOptions) -> Any:
        return await fetch_with_retries(key[0], loader, options.attempts, options.timeout, self.retry_delay)

    def _store(self, key: QueryKey, ticket: int, data: Any, options: QueryOptions) -> Any:
        if ticket <= self._cleared_through:
            logger.info("QueryCache dropped response from before clear operation=%s ticket=%d", key[0], ticket)
            return data

        current = self._entries.get(key)
        if current is not None and current.ticket > ticket:
            stale = StaleWrite(key, ticket, current.ticket)
            logger.info("QueryCache %s", stale)
            self._emit("stale-write", key)
            return current.data

        entry = CacheEntry(
            data=data,
            fetched_at=self._clock(),
            stale_time=options.stale_time,
            ticket=ticket,
            invalidated=ticket <= self._invalidated_through.get(key, 0),
        )
        self._put(key, entry)
        return data

    def _put(self, key: QueryKey, entry: CacheEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._emit("updated", key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            if evicted not in self._in_flight:
                self._invalidated_through.pop(evicted, None)
            logger.debug("QueryCache evicted operation=%s", evicted[0])
            self._emit("evicted", evicted)


def _consume_result(task: asyncio.Future) -> None:
    # Readers may all have stopped waiting; retrieve the error so asyncio does not warn.
    if not task.cancelled():
        task.exception()
