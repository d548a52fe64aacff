from __future__ import annotations


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""


class ValidationError(DashboardError, ValueError):
    pass


class InvalidCurrency(ValidationError):
    def __init__(self, code: str):
        super().__init__(f"Unsupported currency code: {code!r}")
        self.code = code


class TooShort(ValidationError):
    pass


class AuthenticationFailed(DashboardError):
    pass


class NotFound(DashboardError, LookupError):
    pass


class NetworkError(DashboardError):
    """Transport-level failure talking to the bank API."""

    @property
    def transient(self) -> bool:
        return True


class HttpError(NetworkError):
    def __init__(self, status: int, message: str = "", body: str = ""):
        super().__init__(message or f"API Error: {status}")
        self.status = status
        self.body = body

    @property
    def transient(self) -> bool:
        return self.status >= 500 or self.status == 429


class FetchTimeout(NetworkError):
    pass


class StaleWrite(DashboardError):
    """A response was superseded by a newer fetch for the same key and dropped."""

    def __init__(self, key: tuple[str, str], ticket: int, latest: int):
        super().__init__(f"Discarded response for {key[0]} ticket={ticket} latest={latest}")
        self.key = key
        self.ticket = ticket
        self.latest = latest


class SessionInvariantViolation(DashboardError, RuntimeError):
    pass
