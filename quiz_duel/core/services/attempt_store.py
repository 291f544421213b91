"""Persistence of in-progress attempts as opaque key-value snapshots."""

from __future__ import annotations

import logging
from threading import Lock
import time
from typing import Protocol

from pydantic import BaseModel, Field, ValidationError

from quiz_duel.constants.quiz_constants import SNAPSHOT_KEY_PREFIX
from quiz_duel.core.models import PowerUpKind

logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    """Raised when a stored snapshot is unreadable or has the wrong shape."""


class KeyValueStore(Protocol):
    """Opaque string store; ``get`` returns None for missing keys."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store used by the server and by tests."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return [key for key in self._values if key.startswith(prefix)]


class AttemptSnapshot(BaseModel):
    """Persisted shape of an in-progress attempt.

    ``question_order`` and ``options_order`` are optional because snapshots
    written before order tracking existed do not carry them.
    """

    quiz_id: str
    current_question: int = Field(ge=0)
    answers: dict[int, int | str] = Field(default_factory=dict)
    answer_codes: dict[int, str] = Field(default_factory=dict)
    time_left: int = Field(ge=0)
    question_order: list[int] | None = None
    options_order: dict[int, list[int]] | None = None
    used_power_ups: list[PowerUpKind] = Field(default_factory=list)
    locked_questions: list[int] = Field(default_factory=list)
    last_updated: float = Field(default_factory=time.time)


def snapshot_key(user_id: str, quiz_id: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}_{user_id}_{quiz_id}"


class AttemptStore:
    """Reads and writes attempt snapshots through a key-value store."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load(self, user_id: str, quiz_id: str) -> AttemptSnapshot | None:
        """Return the stored snapshot, or None when nothing is stored.

        Raises PersistenceFailure when a value exists but cannot be parsed.
        """
        raw = self._store.get(snapshot_key(user_id, quiz_id))
        if raw is None:
            return None
        try:
            return AttemptSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            raise PersistenceFailure(f"Snapshot for {user_id}/{quiz_id} is unreadable.") from exc

    def save(self, user_id: str, snapshot: AttemptSnapshot) -> None:
        """Write a snapshot; a failing backend is logged, never raised."""
        try:
            self._store.set(snapshot_key(user_id, snapshot.quiz_id), snapshot.model_dump_json())
        except Exception:
            logger.exception("Failed to persist attempt %s/%s", user_id, snapshot.quiz_id)

    def delete(self, user_id: str, quiz_id: str) -> None:
        try:
            self._store.delete(snapshot_key(user_id, quiz_id))
        except Exception:
            logger.exception("Failed to delete attempt snapshot %s/%s", user_id, quiz_id)
