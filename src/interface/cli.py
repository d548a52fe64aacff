from __future__ import annotations

import asyncio
import json
import logging
import os

from application.dashboard import BankDashboard
from application.session import SessionStore
from domain.errors import AuthenticationFailed
from infrastructure.bank_api.http_client import HttpBankApi
from infrastructure.bank_api.in_memory import DEMO_EMAIL, DEMO_PASSWORD, InMemoryBankApi
from infrastructure.bank_api.provider import BankApi
from infrastructure.persistence.query_cache import QueryCache
from infrastructure.persistence.session_storage import JsonFileStorage, KeyValueStorage

logger = logging.getLogger(__name__)


def build_dashboard(api: BankApi | None = None, storage: KeyValueStorage | None = None) -> BankDashboard:
    if api is None:
        # Without a configured API the demo dataset is served from memory.
        api = HttpBankApi() if os.getenv("BANK_API_BASE_URL") else InMemoryBankApi()
    session = SessionStore(api, storage or JsonFileStorage())
    return BankDashboard(
        api=api,
        session=session,
        cache=QueryCache(),
        timeout_seconds=float(os.getenv("BANK_API_TIMEOUT_SECONDS", "30")),
    )


async def run(dashboard: BankDashboard, email: str, password: str) -> dict:
    try:
        if not dashboard.session.is_authenticated:
            await dashboard.login(email, password)
        try:
            overview = await dashboard.overview()
        except AuthenticationFailed:
            # A saved session can outlive its token; sign in again once.
            logger.info("CLI saved session rejected, signing in again email=%s", email)
            dashboard.logout()
            await dashboard.login(email, password)
            overview = await dashboard.overview()
        cards = await dashboard.account_cards()
    finally:
        await dashboard.aclose()
    return {
        "overview": overview.model_dump(mode="json", by_alias=True),
        "cards": [card.model_dump(mode="json", by_alias=True) for card in cards],
    }


def main() -> None:
    email = os.getenv("DEMO_EMAIL", DEMO_EMAIL)
    password = os.getenv("DEMO_PASSWORD", DEMO_PASSWORD)
    result = asyncio.run(run(build_dashboard(), email, password))
    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
