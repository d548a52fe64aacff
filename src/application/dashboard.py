from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from analytics.accounts import calculate_total_balance, describe_account, get_active_accounts
from analytics.transactions import get_recent_transactions
from analytics.validators import is_valid_email, is_valid_phone
from application.session import SessionStore
from domain.errors import AuthenticationFailed, ValidationError
from domain.models import Account, AnalyticsPeriod, Transaction, User
from domain.schemas import (
    AccountCard,
    Analytics,
    DashboardOverview,
    ExchangeRates,
    PaginatedTransactions,
    ProfileUpdate,
    SessionState,
    TransactionFilters,
    TransferForm,
)
from infrastructure.bank_api.provider import BankApi, call_api
from infrastructure.persistence.query_cache import Loader, QueryCache, fetch_with_retries
import queries.accounts  # noqa: F401  (registers the queries)
import queries.analytics  # noqa: F401
import queries.exchange_rates  # noqa: F401
import queries.profile  # noqa: F401
import queries.transactions  # noqa: F401
from queries._support import parse_one
from queries.base import Query
from queries.registry import QueryRegistry, registry as default_registry

logger = logging.getLogger(__name__)

MUTATION_ATTEMPTS = 1
RECENT_TRANSACTIONS = 5

# Cached reads that a new transfer makes outdated.
TRANSFER_INVALIDATES = (
    "transactions",
    "transaction",
    "accounts",
    "account",
    "analytics",
    "search-transactions",
)
PROFILE_INVALIDATES = ("user",)


class BankDashboard:
    """
    Public surface of the dashboard core.

    Owns one ``SessionStore`` and one ``QueryCache``. Reads go through the
    cache with the options of their registered query; writes call the API
    directly and then invalidate the reads they affect.
    """

    def __init__(
        self,
        api: BankApi,
        session: SessionStore,
        cache: Optional[QueryCache] = None,
        registry: Optional[QueryRegistry] = None,
        timeout_seconds: float = 30.0,
    ):
        self._api = api
        self._session = session
        self._cache = cache or QueryCache()
        self._registry = registry or default_registry
        self._timeout = timeout_seconds

    @property
    def session(self) -> SessionState:
        return self._session.state

    @property
    def cache(self) -> QueryCache:
        return self._cache

    # ---- session ----
    async def login(self, email: str, password: str) -> SessionState:
        state = await self._session.login(email, password)
        # Nothing cached for a previous identity may leak into this one.
        self._cache.clear()
        return state

    def logout(self) -> None:
        self._session.logout()
        self._cache.clear()

    # ---- reads ----
    async def list_accounts(self) -> list[Account]:
        return await self._read("accounts")

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self._read("account", account_id=account_id)

    async def list_transactions(
        self,
        filters: Optional[TransactionFilters] = None,
        page: int = 1,
        limit: int = 10,
    ) -> PaginatedTransactions:
        return await self._read("transactions", filters=filters, page=page, limit=limit)

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return await self._read("transaction", transaction_id=transaction_id)

    async def get_analytics(self, period: Union[AnalyticsPeriod, str] = AnalyticsPeriod.MONTH) -> Analytics:
        try:
            period = AnalyticsPeriod(period)
        except ValueError as exc:
            raise ValidationError(f"Unknown analytics period: {period}") from exc
        return await self._read("analytics", period=period)

    async def search_transactions(self, term: str) -> list[Transaction]:
        return await self._read("search-transactions", term=term)

    async def get_exchange_rates(self) -> ExchangeRates:
        return await self._read("exchange-rates")

    async def get_profile(self) -> User:
        return await self._read("user")

    async def overview(self) -> DashboardOverview:
        t0 = time.perf_counter()
        all_accounts, page = await asyncio.gather(
            self.list_accounts(),
            self.list_transactions(limit=RECENT_TRANSACTIONS),
        )
        active = get_active_accounts(all_accounts)
        overview = DashboardOverview(
            accounts=active,
            total_balance=calculate_total_balance(active),
            recent_transactions=get_recent_transactions(RECENT_TRANSACTIONS, page.data),
        )
        logger.info(
            "Dashboard overview complete in %.2fs accounts=%d recent=%d",
            time.perf_counter() - t0,
            len(overview.accounts),
            len(overview.recent_transactions),
        )
        return overview

    async def account_cards(self) -> list[AccountCard]:
        return [describe_account(account) for account in await self.list_accounts()]

    def cached(self, name: str, **kwargs: Any) -> Any:
        """Last successful value for a read, fresh or not; None if never fetched."""
        query = self._registry.get_query(name)
        entry = self._cache.peek(query.key(query.params(**kwargs)))
        return entry.data if entry is not None else None

    # ---- writes ----
    async def create_transfer(self, form: Union[TransferForm, dict[str, Any]]) -> Transaction:
        if not isinstance(form, TransferForm):
            try:
                form = TransferForm.model_validate(form)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid transfer: {exc}") from exc

        payload = await self._mutate("create-transfer", form.model_dump(mode="json", by_alias=True, exclude_none=True))
        created = parse_one(Transaction, payload, "create-transfer")
        self._invalidate(TRANSFER_INVALIDATES)
        logger.info("Dashboard transfer created transaction_id=%s amount=%.2f", created.id, form.amount)
        return created

    async def update_profile(self, changes: Union[ProfileUpdate, dict[str, Any]]) -> User:
        current = self._session.user
        if current is None:
            raise AuthenticationFailed("Sign in before updating the profile")
        if not isinstance(changes, ProfileUpdate):
            try:
                changes = ProfileUpdate.model_validate(changes)
            except PydanticValidationError as exc:
                raise ValidationError(f"Invalid profile update: {exc}") from exc
        if changes.email is not None and not is_valid_email(changes.email):
            raise ValidationError("Enter a valid email address")
        if changes.phone_number is not None and not is_valid_phone(changes.phone_number):
            raise ValidationError("Enter a valid phone number")

        fields = changes.model_dump(exclude_none=True)
        payload = await self._mutate("update-profile", changes.model_dump(mode="json", by_alias=True, exclude_none=True))
        if isinstance(payload, dict) and payload:
            user = parse_one(User, payload, "update-profile")
        else:
            user = current.model_copy(update=fields)

        self._session.set_user(user)
        self._invalidate(PROFILE_INVALIDATES)
        logger.info("Dashboard profile updated user_id=%s fields=%s", user.id, sorted(fields))
        return user

    # ---- lifecycle ----
    def start_background_refresh(self) -> list[asyncio.Task]:
        tasks = []
        for spec in self._registry.list_specs():
            if not spec.refetch_interval:
                continue
            query = self._registry.get_query(spec.name)
            params = query.params()
            tasks.append(
                self._cache.refetch_every(
                    query.key(params),
                    self._loader(query, params),
                    query.options(params, timeout=self._timeout),
                    spec.refetch_interval,
                )
            )
        return tasks

    async def aclose(self) -> None:
        await self._cache.stop_refreshing()
        logger.info("Dashboard closed")

    # ---- internals ----
    def _loader(self, query: Query, params: dict[str, Any]) -> Loader:
        async def load() -> Any:
            # Token is read per attempt so a refresh after re-login uses the new one.
            return await query.load(self._api, params, self._session.token)

        return load

    async def _read(self, name: str, **kwargs: Any) -> Any:
        query = self._registry.get_query(name)
        params = query.params(**kwargs)
        options = query.options(params, timeout=self._timeout)
        if not options.enabled:
            logger.debug("Dashboard read skipped operation=%s (disabled)", name)
            return options.placeholder

        t = time.perf_counter()
        data = await self._cache.get(query.key(params), self._loader(query, params), options)
        logger.debug("Dashboard read operation=%s in %.2fs", name, time.perf_counter() - t)
        return data

    async def _mutate(self, operation: str, params: dict[str, Any]) -> Any:
        token = self._session.token
        if not token:
            raise AuthenticationFailed(f"Sign in before {operation}")

        async def send() -> Any:
            return await call_api(self._api, operation, params, token)

        logger.info("Dashboard mutation start operation=%s", operation)
        return await fetch_with_retries(operation, send, MUTATION_ATTEMPTS, self._timeout, self._cache.retry_delay)

    def _invalidate(self, operations: tuple[str, ...]) -> None:
        wanted = set(operations)
        self._cache.invalidate(lambda key: key[0] in wanted)
