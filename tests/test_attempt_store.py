import pytest

from quiz_duel.core.models import PowerUpKind
from quiz_duel.core.services.attempt_store import (
    AttemptSnapshot,
    AttemptStore,
    InMemoryKeyValueStore,
    PersistenceFailure,
    snapshot_key,
)


class BrokenStore(InMemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        raise OSError("disk full")

    def delete(self, key: str) -> None:
        raise OSError("disk full")


def test_snapshot_key_format() -> None:
    assert snapshot_key("ada", "quiz-1") == "quiz_progress_ada_quiz-1"


def test_save_and_load_keeps_answers_of_both_kinds(attempt_store: AttemptStore) -> None:
    snapshot = AttemptSnapshot(
        quiz_id="quiz-1",
        current_question=1,
        answers={0: 2, 1: "because"},
        answer_codes={2: "await moveSteps(10);"},
        time_left=30,
        used_power_ups=[PowerUpKind.REVEAL_HINT],
    )

    attempt_store.save("ada", snapshot)
    loaded = attempt_store.load("ada", "quiz-1")

    assert loaded.answers == {0: 2, 1: "because"}
    assert loaded.answer_codes == {2: "await moveSteps(10);"}
    assert loaded.used_power_ups == [PowerUpKind.REVEAL_HINT]
    assert loaded.question_order is None


def test_missing_snapshot_loads_as_none(attempt_store: AttemptStore) -> None:
    assert attempt_store.load("ada", "quiz-1") is None


@pytest.mark.parametrize(
    "raw",
    ["not json", '{"quiz_id": "quiz-1"}', '{"quiz_id": "quiz-1", "current_question": -1, "time_left": 5}'],
)
def test_unreadable_snapshot_raises(key_value_store: InMemoryKeyValueStore, raw: str) -> None:
    key_value_store.set(snapshot_key("ada", "quiz-1"), raw)

    with pytest.raises(PersistenceFailure):
        AttemptStore(key_value_store).load("ada", "quiz-1")


def test_backend_failures_are_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    store = AttemptStore(BrokenStore())

    store.save("ada", AttemptSnapshot(quiz_id="quiz-1", current_question=0, time_left=5))
    store.delete("ada", "quiz-1")

    assert "Failed to persist attempt" in caplog.text
    assert "Failed to delete attempt snapshot" in caplog.text


def test_in_memory_store_lists_keys_by_prefix(key_value_store: InMemoryKeyValueStore) -> None:
    key_value_store.set("quiz_progress_ada_q1", "{}")
    key_value_store.set("other", "{}")

    assert key_value_store.keys("quiz_progress") == ["quiz_progress_ada_q1"]
