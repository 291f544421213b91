import random

import pytest

from quiz_duel.core.block_language import register_block_language
from quiz_duel.core.models import PowerUpInventory, PowerUpKind, Question, QuestionKind, Quiz
from quiz_duel.core.services.attempt_store import AttemptStore, InMemoryKeyValueStore
from quiz_duel.core.services.grading_engine import GradingEngine
from quiz_duel.core.services.power_ups import PowerUpManager
from quiz_duel.core.services.session_controller import SessionController

FLAG_AND_MOVE_XML = (
    '<xml xmlns="https://developers.google.com/blockly/xml">'
    '<block type="event_whenflagclicked">'
    '<next><block type="motion_movesteps">'
    '<value name="STEPS"><shadow type="math_number"><field name="NUM">10</field></shadow></value>'
    "</block></next>"
    "</block>"
    "</xml>"
)


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def mc_question(index: int, correct: int = 1, points: int = 1, options: list[str] | None = None) -> Question:
    return Question(
        id=index,
        kind=QuestionKind.MULTIPLE_CHOICE,
        prompt=f"Question {index}",
        options=options or ["red", "green", "blue", "yellow"],
        correct_option_index=correct,
        points=points,
    )


def make_quiz(
    questions: list[Question],
    time_limit_minutes: int = 0,
    passing_score: int = 60,
    review_mode: bool = False,
    quiz_id: str = "quiz-1",
) -> Quiz:
    return Quiz(
        id=quiz_id,
        title="Sample quiz",
        questions=questions,
        time_limit_minutes=time_limit_minutes,
        passing_score=passing_score,
        review_mode=review_mode,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def grading_engine() -> GradingEngine:
    return GradingEngine(block_compiler=register_block_language())


@pytest.fixture
def key_value_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def attempt_store(key_value_store: InMemoryKeyValueStore) -> AttemptStore:
    return AttemptStore(key_value_store)


@pytest.fixture
def four_question_quiz() -> Quiz:
    return make_quiz([mc_question(index) for index in range(4)], time_limit_minutes=1)


@pytest.fixture
def build_session(grading_engine: GradingEngine, attempt_store: AttemptStore, clock: FakeClock):
    """Factory for controllers sharing the test store, clock and a seeded rng."""

    def factory(
        quiz: Quiz,
        inventory: dict[PowerUpKind, int] | None = None,
        seed: int = 7,
        user_id: str = "ada",
    ) -> SessionController:
        rng = random.Random(seed)
        power_ups = PowerUpManager(PowerUpInventory(dict(inventory or {})), rng=rng)
        return SessionController(
            quiz=quiz,
            user_id=user_id,
            grading_engine=grading_engine,
            power_ups=power_ups,
            attempt_store=attempt_store,
            rng=rng,
            clock=clock,
        )

    return factory
