from __future__ import annotations

import asyncio
import json
import logging
import os
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Optional

from domain.errors import HttpError, NetworkError
from infrastructure.bank_api.provider import BankApi

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.bank131.com/v1"

# operation -> (HTTP method, path template relative to the versioned base URL)
ENDPOINTS: dict[str, tuple[str, str]] = {
    "login": ("POST", "/auth/login"),
    "profile": ("GET", "/profile"),
    "update-profile": ("PATCH", "/profile"),
    "accounts": ("GET", "/accounts"),
    "account": ("GET", "/accounts/{account_id}"),
    "transactions": ("GET", "/transactions"),
    "transaction": ("GET", "/transactions/{transaction_id}"),
    "exchange-rates": ("GET", "/exchange-rates"),
    "create-transfer": ("POST", "/transfers"),
}


class HttpBankApi(BankApi):
    """Bank REST API over urllib; each request runs in a worker thread."""

    name = "http"

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("BANK_API_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.timeout_seconds = timeout_seconds or float(os.getenv("BANK_API_TIMEOUT_SECONDS", "30"))

    async def fetch(self, operation: str, params: Optional[dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        request = self.build_request(operation, params or {}, token)
        return await asyncio.to_thread(self._send, operation, request)

    def build_request(self, operation: str, params: dict[str, Any], token: Optional[str]) -> urllib.request.Request:
        if operation not in ENDPOINTS:
            raise ValueError(f"Unknown bank API operation: {operation}")
        method, template = ENDPOINTS[operation]

        remaining = {k: v for k, v in params.items() if v is not None}
        path_values = {}
        for key in list(remaining):
            if "{" + key + "}" in template:
                path_values[key] = urllib.parse.quote(str(remaining.pop(key)), safe="")
        try:
            path = template.format(**path_values)
        except KeyError as exc:
            raise ValueError(f"Missing path parameter {exc} for operation {operation}") from exc

        url = f"{self.base_url}{path}"
        data = None
        if method == "GET":
            if remaining:
                url = f"{url}?{urllib.parse.urlencode(remaining, doseq=True)}"
        else:
            data = json.dumps(remaining).encode("utf-8")

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return urllib.request.Request(url=url, data=data, headers=headers, method=method)

    def _send(self, operation: str, request: urllib.request.Request) -> Any:
        started = time.perf_counter()
        logger.info(
            "HttpBankApi request start operation=%s method=%s url=%s timeout=%.1fs",
            operation,
            request.get_method(),
            request.full_url,
            self.timeout_seconds,
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            logger.warning("HttpBankApi operation=%s failed status=%d after %.2fs", operation, exc.code, time.perf_counter() - started)
            raise HttpError(exc.code, body=body) from exc
        except (socket.timeout, urllib.error.URLError, TimeoutError, ConnectionError) as exc:
            logger.warning("HttpBankApi operation=%s transport failure after %.2fs: %s", operation, time.perf_counter() - started, exc)
            raise NetworkError(f"Request to {request.full_url} failed: {exc}") from exc

        logger.info("HttpBankApi operation=%s complete in %.2fs bytes=%d", operation, time.perf_counter() - started, len(raw))
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise NetworkError(f"Invalid JSON from {request.full_url}: {exc}") from exc
