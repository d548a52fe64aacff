from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class KeyValueStorage(ABC):
    """Durable string storage used to rehydrate the session after a restart."""

    @abstractmethod
    def save(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def load(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    def remove(self, key: str) -> None:
        raise NotImplementedError


class InMemoryStorage(KeyValueStorage):
    def __init__(self):
        self._store: dict[str, str] = {}

    def save(self, key: str, value: str) -> None:
        self._store[key] = value

    def load(self, key: str) -> str | None:
        return self._store.get(key)

    def remove(self, key: str) -> None:
        self._store.pop(key, None)


class JsonFileStorage(KeyValueStorage):
    """All keys live in one JSON object on disk, rewritten on every save."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or os.getenv("SESSION_STORE_PATH", ".bank_dashboard_session.json"))

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("JsonFileStorage could not read %s: %s", self._path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def save(self, key: str, value: str) -> None:
        payload = self._read_all()
        payload[key] = value
        self._write_all(payload)

    def load(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def remove(self, key: str) -> None:
        payload = self._read_all()
        if payload.pop(key, None) is not None:
            self._write_all(payload)
