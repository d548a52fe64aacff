from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from domain.errors import AuthenticationFailed, HttpError, NotFound


class BankApi(ABC):
    """
    Fetch collaborator contract. ``operation`` names one API call (see
    ``infrastructure.bank_api.http_client.ENDPOINTS``), ``params`` carries its
    path/query/body values and ``token`` is the bearer credential, if any.

    Implementations raise ``HttpError`` for non-2xx answers and
    ``NetworkError`` for transport failures.
    """

    name: str = "bank_api"

    @abstractmethod
    async def fetch(self, operation: str, params: Optional[dict[str, Any]] = None, token: Optional[str] = None) -> Any:
        raise NotImplementedError


def unwrap(operation: str, payload: Any) -> Any:
    """Strip the ``{"data": ..., "success": ...}`` envelope when present."""
    if isinstance(payload, dict) and "data" in payload and ("success" in payload or "message" in payload):
        if payload.get("success") is False:
            raise HttpError(400, f"{operation} rejected: {payload.get('message') or 'unknown error'}")
        return payload["data"]
    return payload


async def call_api(api: BankApi, operation: str, params: Optional[dict[str, Any]] = None, token: Optional[str] = None) -> Any:
    """Fetch and unwrap, translating 401/403 and 404 into domain errors."""
    try:
        payload = await api.fetch(operation, params, token)
    except HttpError as exc:
        if exc.status in (401, 403):
            raise AuthenticationFailed(str(exc)) from exc
        if exc.status == 404:
            raise NotFound(f"{operation}: {exc}") from exc
        raise
    return unwrap(operation, payload)
