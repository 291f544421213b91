import random

import pytest

from conftest import FakeClock, make_quiz, mc_question
from quiz_duel.core.models import NavigationDirection, PowerUpKind, SessionStatus
from quiz_duel.core.quiz_manager import AttemptManager
from quiz_duel.core.services.attempt_store import InMemoryKeyValueStore


@pytest.fixture
def manager(clock: FakeClock) -> AttemptManager:
    attempt_manager = AttemptManager(
        key_value_store=InMemoryKeyValueStore(),
        rng_factory=lambda: random.Random(11),
        clock=clock,
    )
    attempt_manager.load_quiz(make_quiz([mc_question(0, correct=0), mc_question(1, correct=0)], time_limit_minutes=1))
    return attempt_manager


def _answer_correctly(manager: AttemptManager) -> None:
    view = manager.get_attempt("ada", "quiz-1").view
    manager.answer("ada", "quiz-1", view.display_options.index(view.question.options[0]))


def test_full_attempt_through_the_facade(manager: AttemptManager, clock: FakeClock) -> None:
    assert manager.start_attempt("ada", "quiz-1") is SessionStatus.IN_PROGRESS

    _answer_correctly(manager)
    assert manager.navigate("ada", "quiz-1", NavigationDirection.NEXT)
    _answer_correctly(manager)
    clock.advance(12)
    result = manager.submit("ada", "quiz-1")

    assert result.correct_answer_count == 2
    assert result.percentage == 100
    assert result.time_taken_seconds == 12
    # Submitting again hands back the stored result.
    assert manager.submit("ada", "quiz-1") is result
    assert manager.get_attempt("ada", "quiz-1").status is SessionStatus.COMPLETED


def test_second_start_needs_a_finished_attempt(manager: AttemptManager) -> None:
    manager.start_attempt("ada", "quiz-1")
    with pytest.raises(RuntimeError):
        manager.start_attempt("ada", "quiz-1")

    manager.submit("ada", "quiz-1")
    assert manager.start_attempt("ada", "quiz-1") is SessionStatus.IN_PROGRESS


def test_restarted_process_offers_resume() -> None:
    store = InMemoryKeyValueStore()
    quiz = make_quiz([mc_question(0), mc_question(1)], time_limit_minutes=1)
    first = AttemptManager(key_value_store=store)
    first.load_quiz(quiz)
    first.start_attempt("ada", "quiz-1")
    first.answer("ada", "quiz-1", 0)

    second = AttemptManager(key_value_store=store)
    second.load_quiz(quiz)

    assert second.start_attempt("ada", "quiz-1") is SessionStatus.RESUME_PROMPT
    second.resume_attempt("ada", "quiz-1")
    overview = second.get_attempt("ada", "quiz-1")
    assert overview.status is SessionStatus.IN_PROGRESS
    assert overview.view.position == 0
    assert overview.view.selected == 0


def test_unknown_attempts_and_quizzes_raise_lookup_error(manager: AttemptManager) -> None:
    with pytest.raises(LookupError):
        manager.get_attempt("ada", "quiz-1")
    with pytest.raises(LookupError):
        manager.start_attempt("ada", "missing")


def test_inventory_is_shared_with_live_sessions(manager: AttemptManager) -> None:
    manager.start_attempt("ada", "quiz-1")
    manager.set_inventory("ada", {"time-extend": 1})

    effect = manager.use_power_up("ada", "quiz-1", PowerUpKind.TIME_EXTEND)

    assert effect is not None
    assert manager.get_inventory("ada") == {PowerUpKind.TIME_EXTEND: 0}
    assert manager.get_attempt("ada", "quiz-1").view.time_remaining_seconds == 80


def test_tick_all_submits_expired_attempts(manager: AttemptManager) -> None:
    manager.start_attempt("ada", "quiz-1")
    manager.start_attempt("bob", "quiz-1")

    results = []
    for _ in range(60):
        results.extend(manager.tick_all())

    assert len(results) == 2
    assert manager.get_attempt("bob", "quiz-1").status is SessionStatus.COMPLETED


def test_text_import_and_export(manager: AttemptManager) -> None:
    quiz = manager.import_quiz_text("TITLE: Imported\n\nQ: Pick\nA: x\nB: y\nCORRECT: A\n", "imported")

    assert quiz.title == "Imported"
    assert manager.export_quiz_text("imported").startswith("TITLE: Imported")
