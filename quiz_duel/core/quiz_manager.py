"""Business logic for managing quizzes and attempts shared by the API and the ticker."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import random
from threading import Lock
import time

from quiz_duel.core.block_language import register_block_language
from quiz_duel.core.models import (
    GradingResult,
    NavigationDirection,
    PowerUpInventory,
    PowerUpKind,
    Quiz,
    QuizResult,
    SessionStatus,
)
from quiz_duel.core.quiz_exporter import serialize_quiz
from quiz_duel.core.quiz_importer import parse_quiz_text
from quiz_duel.core.services.attempt_store import AttemptStore, InMemoryKeyValueStore, KeyValueStore
from quiz_duel.core.services.grading_engine import GradingEngine
from quiz_duel.core.services.power_ups import PowerUpEffect, PowerUpManager
from quiz_duel.core.services.quiz_repository import QuizRepository
from quiz_duel.core.services.session_controller import QuestionView, SessionController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AttemptOverview:
    """Read-only picture of one attempt, safe to hand out of the manager lock."""

    quiz_id: str
    user_id: str
    status: SessionStatus
    view: QuestionView | None
    result: QuizResult | None
    elapsed_seconds: int
    inventory: dict[PowerUpKind, int] = field(default_factory=dict)


class AttemptManager:
    """Facade for quiz services: Repository, AttemptStore, GradingEngine and sessions."""

    def __init__(
        self,
        key_value_store: KeyValueStore | None = None,
        grading_engine: GradingEngine | None = None,
        rng_factory: Callable[[], random.Random] = random.Random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = Lock()

        # Services
        self._repository = QuizRepository()
        self._store = AttemptStore(key_value_store or InMemoryKeyValueStore())
        self._grading = grading_engine or GradingEngine(block_compiler=register_block_language())
        self._rng_factory = rng_factory
        self._clock = clock

        self._inventories: dict[str, PowerUpInventory] = {}
        self._sessions: dict[tuple[str, str], SessionController] = {}

    # --- Quiz Repository Delegation ---

    def load_quiz(self, quiz: Quiz) -> Quiz:
        with self._lock:
            prepared = self._repository.load_quiz(quiz)
            logger.info("Loaded quiz %s with %s questions", prepared.id, len(prepared.questions))
            return prepared

    def import_quiz_text(self, text: str, quiz_id: str) -> Quiz:
        return self.load_quiz(parse_quiz_text(text, quiz_id))

    def export_quiz_text(self, quiz_id: str) -> str:
        with self._lock:
            return serialize_quiz(self._repository.get_quiz(quiz_id))

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return self._repository.get_quiz(quiz_id)

    def get_quizzes(self) -> list[Quiz]:
        with self._lock:
            return self._repository.get_quizzes()

    # --- Power-up inventory ---

    def set_inventory(self, user_id: str, quantities: dict[str, int]) -> dict[PowerUpKind, int]:
        replacement = PowerUpInventory.from_mapping(quantities)
        with self._lock:
            inventory = self._inventory_for(user_id)
            # Live sessions hold the same inventory object.
            inventory.quantities = replacement.quantities
            return dict(inventory.quantities)

    def get_inventory(self, user_id: str) -> dict[PowerUpKind, int]:
        with self._lock:
            return dict(self._inventory_for(user_id).quantities)

    # --- Attempt lifecycle ---

    def start_attempt(self, user_id: str, quiz_id: str) -> SessionStatus:
        with self._lock:
            key = (user_id, quiz_id)
            existing = self._sessions.get(key)
            if existing is not None and existing.status is not SessionStatus.COMPLETED:
                raise RuntimeError("An attempt for this quiz is already open.")
            quiz = self._repository.get_quiz(quiz_id)
            rng = self._rng_factory()
            session = SessionController(
                quiz=quiz,
                user_id=user_id,
                grading_engine=self._grading,
                power_ups=PowerUpManager(
                    self._inventory_for(user_id),
                    rng=rng,
                    on_used=lambda kind: logger.info("User %s used %s on quiz %s", user_id, kind.value, quiz_id),
                ),
                attempt_store=self._store,
                rng=rng,
                clock=self._clock,
            )
            self._sessions[key] = session
            status = session.start()
            logger.info("Attempt opened: user=%s quiz=%s status=%s", user_id, quiz_id, status.value)
            return status

    def resume_attempt(self, user_id: str, quiz_id: str) -> None:
        with self._lock:
            self._require_session(user_id, quiz_id).resume()

    def start_new_attempt(self, user_id: str, quiz_id: str) -> None:
        with self._lock:
            self._require_session(user_id, quiz_id).start_new()

    def answer(self, user_id: str, quiz_id: str, value: int | str, generated_artifact: str | None = None) -> bool:
        with self._lock:
            return self._require_session(user_id, quiz_id).answer(value, generated_artifact)

    def navigate(self, user_id: str, quiz_id: str, direction: NavigationDirection | int) -> bool:
        with self._lock:
            return self._require_session(user_id, quiz_id).navigate(direction)

    def use_power_up(self, user_id: str, quiz_id: str, kind: PowerUpKind) -> PowerUpEffect | None:
        with self._lock:
            return self._require_session(user_id, quiz_id).use_power_up(kind)

    def check_answer(self, user_id: str, quiz_id: str) -> GradingResult | None:
        with self._lock:
            return self._require_session(user_id, quiz_id).check_answer()

    def submit(self, user_id: str, quiz_id: str) -> QuizResult:
        """Submit the attempt; an already submitted attempt returns its stored result."""
        with self._lock:
            session = self._require_session(user_id, quiz_id)
            result = session.submit() or session.result
            if result is None:
                raise RuntimeError("Attempt is not in progress.")
            return result

    def get_attempt(self, user_id: str, quiz_id: str) -> AttemptOverview:
        with self._lock:
            session = self._require_session(user_id, quiz_id)
            view = session.current_view() if session.state is not None else None
            return AttemptOverview(
                quiz_id=quiz_id,
                user_id=user_id,
                status=session.status,
                view=view,
                result=session.result,
                elapsed_seconds=session.elapsed_seconds(),
                inventory=dict(session.power_ups.inventory.quantities),
            )

    # --- Timer ---

    def tick_all(self) -> list[QuizResult]:
        """Advance every live timer by one second and return attempts that timed out."""
        with self._lock:
            sessions = list(self._sessions.values())
            results: list[QuizResult] = []
            for session in sessions:
                result = session.tick()
                if result is not None:
                    results.append(result)
            return results

    # --- Internals ---

    def _inventory_for(self, user_id: str) -> PowerUpInventory:
        inventory = self._inventories.get(user_id)
        if inventory is None:
            inventory = PowerUpInventory()
            self._inventories[user_id] = inventory
        return inventory

    def _require_session(self, user_id: str, quiz_id: str) -> SessionController:
        session = self._sessions.get((user_id, quiz_id))
        if session is None:
            raise LookupError(f"No attempt for quiz '{quiz_id}' by '{user_id}'.")
        return session
