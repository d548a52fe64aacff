from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from application.dashboard import BankDashboard
from domain.errors import AuthenticationFailed, FetchTimeout, HttpError, NetworkError, NotFound, ValidationError
from domain.models import AnalyticsPeriod, TransactionCategory, TransactionStatus, TransactionType
from domain.schemas import Credentials, ProfileUpdate, TransactionFilters, TransferForm
from interface.cli import build_dashboard

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    return value


def _session_view(dashboard: BankDashboard) -> dict[str, Any]:
    state = dashboard.session
    return {
        "user": _dump(state.user) if state.user else None,
        "isAuthenticated": state.is_authenticated,
        "isLoading": state.is_loading,
    }


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "message": message})


def create_app(dashboard: Optional[BankDashboard] = None) -> FastAPI:
    dashboard = dashboard or build_dashboard()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        dashboard.start_background_refresh()
        yield
        await dashboard.aclose()

    app = FastAPI(title="Bank Dashboard API", lifespan=lifespan)
    app.state.dashboard = dashboard

    @app.exception_handler(ValidationError)
    async def on_validation(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, str(exc) or "Invalid request")

    @app.exception_handler(AuthenticationFailed)
    async def on_auth(request: Request, exc: AuthenticationFailed) -> JSONResponse:
        if request.url.path.endswith("/session/login"):
            return _error(401, "Invalid email or password")
        return _error(401, "Authentication required")

    @app.exception_handler(NotFound)
    async def on_not_found(request: Request, exc: NotFound) -> JSONResponse:
        return _error(404, "Not found")

    @app.exception_handler(NetworkError)
    async def on_network(request: Request, exc: NetworkError) -> JSONResponse:
        if isinstance(exc, FetchTimeout):
            return _error(504, "The bank did not answer in time")
        if isinstance(exc, HttpError) and 400 <= exc.status < 500:
            return _error(exc.status, "The bank rejected the request")
        logger.warning("API upstream failure path=%s: %s", request.url.path, exc)
        return _error(502, "The bank service is unavailable")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/session")
    def session() -> dict[str, Any]:
        return _session_view(dashboard)

    @app.post("/session/login")
    async def login(credentials: Credentials) -> dict[str, Any]:
        await dashboard.login(credentials.email, credentials.password)
        return _session_view(dashboard)

    @app.post("/session/logout")
    def logout() -> dict[str, Any]:
        dashboard.logout()
        return _session_view(dashboard)

    @app.get("/accounts")
    async def accounts() -> list:
        return _dump(await dashboard.list_accounts())

    # Registered before /accounts/{account_id} so "cards" is not taken as an id.
    @app.get("/accounts/cards")
    async def account_cards() -> list:
        return _dump(await dashboard.account_cards())

    @app.get("/accounts/{account_id}")
    async def account(account_id: str) -> dict:
        return _dump(await dashboard.get_account(account_id))

    @app.get("/overview")
    async def overview() -> dict:
        return _dump(await dashboard.overview())

    @app.get("/transactions")
    async def transactions(
        account_id: Optional[str] = None,
        type: Optional[TransactionType] = None,
        category: Optional[TransactionCategory] = None,
        status: Optional[TransactionStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        try:
            filters = TransactionFilters(
                account_id=account_id,
                type=type,
                category=category,
                status=status,
                start_date=start_date,
                end_date=end_date,
                min_amount=min_amount,
                max_amount=max_amount,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid filters: {exc}") from exc
        return _dump(await dashboard.list_transactions(filters, page=page, limit=limit))

    @app.get("/transactions/search")
    async def search(q: str = "") -> list:
        return _dump(await dashboard.search_transactions(q))

    @app.get("/transactions/{transaction_id}")
    async def transaction(transaction_id: str) -> dict:
        return _dump(await dashboard.get_transaction(transaction_id))

    @app.get("/analytics")
    async def analytics(period: AnalyticsPeriod = AnalyticsPeriod.MONTH) -> dict:
        return _dump(await dashboard.get_analytics(period))

    @app.get("/exchange-rates")
    async def exchange_rates() -> dict:
        return _dump(await dashboard.get_exchange_rates())

    @app.post("/transfers", status_code=201)
    async def transfer(form: TransferForm) -> dict:
        return _dump(await dashboard.create_transfer(form))

    @app.get("/profile")
    async def profile() -> dict:
        return _dump(await dashboard.get_profile())

    @app.patch("/profile")
    async def update_profile(changes: ProfileUpdate) -> dict:
        return _dump(await dashboard.update_profile(changes))

    return app


app = create_app()
