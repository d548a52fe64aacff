from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from analytics.validators import is_valid_email
from domain.errors import AuthenticationFailed, SessionInvariantViolation, ValidationError
from domain.models import User
from domain.schemas import AuthResult, SessionSnapshot, SessionState
from infrastructure.bank_api.provider import BankApi, call_api
from infrastructure.persistence.session_storage import KeyValueStorage

logger = logging.getLogger(__name__)

STORAGE_KEY = "auth-store"
MIN_PASSWORD_LENGTH = 6

SessionListener = Callable[[SessionState], None]


class SessionStore:
    """
    Authenticated identity for the running process.

    anonymous -> authenticating (is_loading) -> authenticated -> anonymous.
    ``user``, ``token`` and ``is_authenticated`` are persisted through the
    storage collaborator after every change; ``is_loading`` never is. The
    state is replaced as a whole, so readers never see a half-applied login
    or logout.
    """

    def __init__(self, auth: BankApi, storage: KeyValueStorage, storage_key: str = STORAGE_KEY):
        self._auth = auth
        self._storage = storage
        self._storage_key = storage_key
        self._listeners: list[SessionListener] = []
        snapshot = self._rehydrate()
        self._state = SessionState(user=snapshot.user, token=snapshot.token, is_authenticated=snapshot.is_authenticated)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token(self) -> Optional[str]:
        return self._state.token

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    # ---- transitions ----
    async def login(self, email: str, password: str) -> SessionState:
        if not is_valid_email(email):
            raise ValidationError("Enter a valid email address")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        self.set_loading(True)
        logger.info("SessionStore login start email=%s", email)
        try:
            payload = await call_api(self._auth, "login", {"email": email, "password": password})
            result = AuthResult.model_validate(payload)
        except AuthenticationFailed:
            self.set_loading(False)
            logger.info("SessionStore login rejected email=%s", email)
            raise
        except PydanticValidationError as exc:
            self.set_loading(False)
            raise AuthenticationFailed(f"Malformed login response: {exc}") from exc
        except BaseException:
            self.set_loading(False)
            raise

        self._replace(SessionState(user=result.user, token=result.token, is_authenticated=True, is_loading=False))
        logger.info("SessionStore login complete user_id=%s", result.user.id)
        return self._state

    def logout(self) -> None:
        self._replace(SessionState())
        logger.info("SessionStore logout")

    def set_user(self, user: User) -> None:
        if not self._state.token:
            raise SessionInvariantViolation("Cannot set a user without a token")
        self._replace(self._state.model_copy(update={"user": user, "is_authenticated": True}))

    def set_token(self, token: str) -> None:
        self._replace(self._state.model_copy(update={"token": token}))

    def set_loading(self, loading: bool) -> None:
        self._replace(self._state.model_copy(update={"is_loading": bool(loading)}), persist=False)

    # ---- observers ----
    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- internals ----
    def _replace(self, state: SessionState, persist: bool = True) -> None:
        self._state = state
        if persist:
            self._persist()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("SessionStore listener failed")

    def _persist(self) -> None:
        snapshot = SessionSnapshot(
            user=self._state.user,
            token=self._state.token,
            is_authenticated=self._state.is_authenticated,
        )
        try:
            self._storage.save(self._storage_key, snapshot.model_dump_json(by_alias=True))
        except OSError as exc:
            logger.warning("SessionStore could not persist session: %s", exc)

    def _rehydrate(self) -> SessionSnapshot:
        raw = self._storage.load(self._storage_key)
        if not raw:
            return SessionSnapshot()
        try:
            snapshot = SessionSnapshot.model_validate_json(raw)
        except PydanticValidationError as exc:
            logger.warning("SessionStore ignoring unreadable persisted session: %s", exc)
            return SessionSnapshot()

        complete = snapshot.user is not None and bool(snapshot.token)
        if snapshot.is_authenticated and not complete:
            logger.warning("SessionStore ignoring persisted session without user or token")
            return SessionSnapshot()
        if complete and not snapshot.is_authenticated:
            return snapshot.model_copy(update={"is_authenticated": True})
        logger.info("SessionStore rehydrated authenticated=%s", snapshot.is_authenticated)
        return snapshot
